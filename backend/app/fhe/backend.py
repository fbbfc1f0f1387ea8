"""Abstract encrypted value operations.

The ledgers depend only on :class:`FheBackend`; a concrete scheme is bound at
the integration boundary through a factory taking the transaction's session.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from sqlalchemy.orm import Session

from .types import EncryptedInput, FheType


class FheBackend(ABC):
    """Homomorphic operations over ciphertext handles plus their access lists."""

    # Construction

    @abstractmethod
    def trivial_encrypt(self, value: int | bool, fhe_type: FheType = FheType.EUINT64) -> str:
        """Encrypt a public constant."""

    @abstractmethod
    def create_input(
        self, contract: str, user: str, values: Sequence[tuple[FheType, int | bool]]
    ) -> EncryptedInput:
        """Encrypt client values for ``contract`` on behalf of ``user``."""

    @abstractmethod
    def verify_input(
        self, handle: str, proof: str, *, contract: str, user: str, fhe_type: FheType
    ) -> str:
        """Check an input handle was produced for ``(contract, user)``.

        On success the contract is granted access to the handle.
        """

    # Arithmetic

    @abstractmethod
    def add(self, lhs: str, rhs: str) -> str: ...

    @abstractmethod
    def sub(self, lhs: str, rhs: str) -> str: ...

    @abstractmethod
    def add_public(self, lhs: str, scalar: int) -> str: ...

    @abstractmethod
    def mul_public(self, lhs: str, scalar: int) -> str: ...

    @abstractmethod
    def div_public(self, lhs: str, scalar: int) -> str:
        """Floor division by a public, non-zero scalar."""

    @abstractmethod
    def cast(self, handle: str, fhe_type: FheType) -> str: ...

    # Comparison and selection

    @abstractmethod
    def eq(self, lhs: str, rhs: str) -> str: ...

    @abstractmethod
    def eq_public(self, lhs: str, scalar: int | bool) -> str: ...

    @abstractmethod
    def le(self, lhs: str, rhs: str) -> str: ...

    @abstractmethod
    def and_(self, lhs: str, rhs: str) -> str: ...

    @abstractmethod
    def select(self, condition: str, if_true: str, if_false: str) -> str: ...

    # Access control and decryption

    @abstractmethod
    def fhe_type_of(self, handle: str) -> FheType: ...

    @abstractmethod
    def allow(self, handle: str, principal: str) -> None: ...

    @abstractmethod
    def is_allowed(self, handle: str, principal: str) -> bool: ...

    @abstractmethod
    def make_publicly_decryptable(self, handle: str) -> None: ...

    @abstractmethod
    def is_publicly_decryptable(self, handle: str) -> bool: ...

    @abstractmethod
    def user_decrypt(self, handle: str, principal: str) -> int | bool:
        """Decrypt for a principal present on the handle's access list."""

    @abstractmethod
    def public_plaintext(self, handle: str) -> int:
        """Cleartext of a publicly decryptable handle, as seen by the KMS."""

    def allow_all(self, handle: str, *principals: str) -> str:
        for principal in principals:
            self.allow(handle, principal)
        return handle


BackendFactory = Callable[[Session], FheBackend]


__all__ = ["BackendFactory", "FheBackend"]

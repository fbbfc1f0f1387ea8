"""In-process threshold KMS for development, demos and tests.

It reads cleartexts straight from the plaintext-shadow backend, so it only
makes sense next to a ``SettlementEngine`` that uses it.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from eth_account import Account

from app.core.config import Settings
from app.core.errors import AccessDenied, CiphertextNotFound
from app.services.decryption import (
    DecryptionResponse,
    KmsProofVerifier,
    encode_clear_values,
    sign_decryption,
)

from .errors import OracleError

if TYPE_CHECKING:
    from app.engine import SettlementEngine


class LocalKmsOracle:
    def __init__(self, engine: "SettlementEngine", private_keys: Iterable[str | bytes]) -> None:
        self._engine = engine
        self._accounts = [Account.from_key(key) for key in private_keys]
        if not self._accounts:
            raise ValueError("the local KMS needs at least one signing key")

    @classmethod
    def generate(cls, engine: "SettlementEngine", signers: int = 1) -> "LocalKmsOracle":
        return cls(engine, [Account.create().key for _ in range(signers)])

    @classmethod
    def from_settings(cls, engine: "SettlementEngine", settings: Settings) -> "LocalKmsOracle":
        return cls(engine, settings.local_kms_private_keys)

    @property
    def signer_addresses(self) -> list[str]:
        return [account.address for account in self._accounts]

    def verifier(self, threshold: int | None = None) -> KmsProofVerifier:
        return KmsProofVerifier(self.signer_addresses, threshold or len(self._accounts))

    def decrypt(self, handles: Sequence[str], *, signers: int | None = None) -> DecryptionResponse:
        """Reveal publicly decryptable handles and sign the result.

        ``signers`` limits how many keys sign, to exercise threshold checks.
        """

        try:
            values = self._engine.public_plaintexts(handles)
        except (AccessDenied, CiphertextNotFound) as exc:
            raise OracleError(f"KMS refused to decrypt: {exc}") from exc
        encoded = encode_clear_values(values)
        keys = [account.key for account in self._accounts[: signers or len(self._accounts)]]
        return DecryptionResponse(
            clear_values=values,
            abi_encoded_clear_values=encoded,
            decryption_proof=sign_decryption(handles, encoded, keys),
        )

    async def public_decrypt(self, handles: Sequence[str]) -> DecryptionResponse:
        return self.decrypt(handles)


__all__ = ["LocalKmsOracle"]

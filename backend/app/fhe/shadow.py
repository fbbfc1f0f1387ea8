"""Plaintext-shadow backend persisting ciphertexts next to the ledgers."""

from __future__ import annotations

import secrets
from collections.abc import Sequence

from eth_utils import encode_hex, keccak, to_bytes
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import AccessDenied, CiphertextNotFound, InvalidInputProof
from app.models import Ciphertext, CiphertextGrant

from .backend import FheBackend
from .types import EncryptedInput, FheType


def _new_handle() -> str:
    return "0x" + secrets.token_hex(32)


def _input_proof(contract: str, user: str, handles: Sequence[str]) -> str:
    payload = contract.lower().encode() + user.lower().encode()
    payload += b"".join(to_bytes(hexstr=handle) for handle in handles)
    return encode_hex(keccak(payload))


class ShadowFheBackend(FheBackend):
    """Evaluate every operation on a stored plaintext shadow.

    Rows are written through the caller's session, so ciphertexts created by
    an aborted transaction disappear with it.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Storage helpers

    def _load(self, handle: str) -> Ciphertext:
        row = self._session.get(Ciphertext, handle)
        if row is None:
            raise CiphertextNotFound(f"unknown ciphertext handle {handle}")
        return row

    def _operand(self, handle: str) -> tuple[FheType, int]:
        row = self._load(handle)
        return FheType(row.fhe_type), row.shadow_value

    def _store(self, fhe_type: FheType, value: int | bool) -> str:
        handle = _new_handle()
        self._session.add(
            Ciphertext(handle=handle, fhe_type=fhe_type.value, shadow_value=fhe_type.wrap(value))
        )
        self._session.flush()
        return handle

    def _binary_uint(self, lhs: str, rhs: str) -> tuple[FheType, int, int]:
        lhs_type, lhs_value = self._operand(lhs)
        rhs_type, rhs_value = self._operand(rhs)
        if lhs_type is not rhs_type or lhs_type.is_boolean:
            raise TypeError(f"operands must share an unsigned type, got {lhs_type} and {rhs_type}")
        return lhs_type, lhs_value, rhs_value

    def _unary_uint(self, handle: str) -> tuple[FheType, int]:
        fhe_type, value = self._operand(handle)
        if fhe_type.is_boolean:
            raise TypeError("arithmetic requires an unsigned operand")
        return fhe_type, value

    # ------------------------------------------------------------------
    # Construction

    def trivial_encrypt(self, value: int | bool, fhe_type: FheType = FheType.EUINT64) -> str:
        return self._store(fhe_type, value)

    def create_input(
        self, contract: str, user: str, values: Sequence[tuple[FheType, int | bool]]
    ) -> EncryptedInput:
        handles = [_new_handle() for _ in values]
        proof = _input_proof(contract, user, handles)
        for handle, (fhe_type, value) in zip(handles, values):
            if not fhe_type.is_boolean and int(value) < 0:
                raise ValueError("encrypted inputs must be unsigned")
            self._session.add(
                Ciphertext(
                    handle=handle,
                    fhe_type=fhe_type.value,
                    shadow_value=fhe_type.wrap(value),
                    input_contract=contract.lower(),
                    input_user=user.lower(),
                    input_proof=proof,
                )
            )
            self._session.flush()
            self.allow(handle, user)
        return EncryptedInput(contract=contract, user=user, handles=handles, proof=proof)

    def verify_input(
        self, handle: str, proof: str, *, contract: str, user: str, fhe_type: FheType
    ) -> str:
        row = self._session.get(Ciphertext, handle)
        if (
            row is None
            or row.input_proof is None
            or row.input_proof != proof
            or row.input_contract != contract.lower()
            or row.input_user != user.lower()
        ):
            raise InvalidInputProof(f"input {handle} is not bound to {user} for {contract}")
        if FheType(row.fhe_type) is not fhe_type:
            raise InvalidInputProof(f"input {handle} is {row.fhe_type}, expected {fhe_type.value}")
        self.allow(handle, contract)
        return handle

    # ------------------------------------------------------------------
    # Arithmetic

    def add(self, lhs: str, rhs: str) -> str:
        fhe_type, a, b = self._binary_uint(lhs, rhs)
        return self._store(fhe_type, a + b)

    def sub(self, lhs: str, rhs: str) -> str:
        fhe_type, a, b = self._binary_uint(lhs, rhs)
        return self._store(fhe_type, a - b)

    def add_public(self, lhs: str, scalar: int) -> str:
        fhe_type, value = self._unary_uint(lhs)
        return self._store(fhe_type, value + int(scalar))

    def mul_public(self, lhs: str, scalar: int) -> str:
        fhe_type, value = self._unary_uint(lhs)
        return self._store(fhe_type, value * int(scalar))

    def div_public(self, lhs: str, scalar: int) -> str:
        if int(scalar) <= 0:
            raise ValueError("division requires a positive public scalar")
        fhe_type, value = self._unary_uint(lhs)
        return self._store(fhe_type, value // int(scalar))

    def cast(self, handle: str, fhe_type: FheType) -> str:
        _, value = self._operand(handle)
        return self._store(fhe_type, value)

    # ------------------------------------------------------------------
    # Comparison and selection

    def eq(self, lhs: str, rhs: str) -> str:
        lhs_type, a = self._operand(lhs)
        rhs_type, b = self._operand(rhs)
        if lhs_type is not rhs_type:
            raise TypeError(f"cannot compare {lhs_type} with {rhs_type}")
        return self._store(FheType.EBOOL, a == b)

    def eq_public(self, lhs: str, scalar: int | bool) -> str:
        fhe_type, value = self._operand(lhs)
        return self._store(FheType.EBOOL, value == fhe_type.wrap(scalar))

    def le(self, lhs: str, rhs: str) -> str:
        _, a, b = self._binary_uint(lhs, rhs)
        return self._store(FheType.EBOOL, a <= b)

    def and_(self, lhs: str, rhs: str) -> str:
        lhs_type, a = self._operand(lhs)
        rhs_type, b = self._operand(rhs)
        if not (lhs_type.is_boolean and rhs_type.is_boolean):
            raise TypeError("and_ requires two ebool operands")
        return self._store(FheType.EBOOL, a and b)

    def select(self, condition: str, if_true: str, if_false: str) -> str:
        cond_type, cond = self._operand(condition)
        if not cond_type.is_boolean:
            raise TypeError("select condition must be an ebool")
        true_type, true_value = self._operand(if_true)
        false_type, false_value = self._operand(if_false)
        if true_type is not false_type:
            raise TypeError(f"select branches differ: {true_type} and {false_type}")
        return self._store(true_type, true_value if cond else false_value)

    # ------------------------------------------------------------------
    # Access control and decryption

    def fhe_type_of(self, handle: str) -> FheType:
        return FheType(self._load(handle).fhe_type)

    def allow(self, handle: str, principal: str) -> None:
        self._load(handle)
        if self.is_allowed(handle, principal):
            return
        self._session.add(CiphertextGrant(handle=handle, principal=principal.lower()))

    def is_allowed(self, handle: str, principal: str) -> bool:
        query = select(CiphertextGrant.grant_id).where(
            CiphertextGrant.handle == handle,
            CiphertextGrant.principal == principal.lower(),
        )
        return self._session.execute(query).first() is not None

    def make_publicly_decryptable(self, handle: str) -> None:
        self._load(handle).publicly_decryptable = True

    def is_publicly_decryptable(self, handle: str) -> bool:
        return bool(self._load(handle).publicly_decryptable)

    def user_decrypt(self, handle: str, principal: str) -> int | bool:
        fhe_type, value = self._operand(handle)
        if not self.is_allowed(handle, principal):
            raise AccessDenied(f"{principal} may not decrypt {handle}")
        return bool(value) if fhe_type.is_boolean else value

    def public_plaintext(self, handle: str) -> int:
        row = self._load(handle)
        if not row.publicly_decryptable:
            raise AccessDenied(f"{handle} is not publicly decryptable")
        return row.shadow_value

    def peek(self, handle: str) -> int:
        """Shadow value without any access check; conservation probes only."""

        return self._load(handle).shadow_value


__all__ = ["ShadowFheBackend"]

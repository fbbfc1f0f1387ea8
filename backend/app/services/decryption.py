"""Public decryption results and their KMS proofs.

A proof is one signature-count byte followed by that many 65-byte EIP-191
signatures. Every KMS signer signs ``keccak(abi(handles) || abi(values))`` so a
proof binds the cleartexts to the exact handles that were requested; it cannot
be replayed for another market or another unwrap.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import encode_hex, keccak, to_bytes

from app.core.config import Settings
from app.core.errors import InvalidDecryptionProof

SIGNATURE_LENGTH = 65


def _as_bytes(value: bytes | str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return to_bytes(hexstr=value)


def encode_clear_values(values: Sequence[int | bool]) -> bytes:
    """ABI-encode cleartexts as consecutive ``uint256`` words."""

    words = [int(value) for value in values]
    return abi_encode(["uint256"] * len(words), words)


def decode_clear_values(encoded: bytes | str, count: int) -> list[int]:
    raw = _as_bytes(encoded)
    if len(raw) != 32 * count:
        raise InvalidDecryptionProof(f"expected {count} encoded words, got {len(raw)} bytes")
    try:
        return list(abi_decode(["uint256"] * count, raw))
    except DecodingError as exc:
        raise InvalidDecryptionProof("clear values are not valid uint256 words") from exc


def proof_digest(handles: Sequence[str], encoded: bytes | str) -> bytes:
    handle_words = [_as_bytes(handle) for handle in handles]
    return keccak(abi_encode(["bytes32"] * len(handle_words), handle_words) + _as_bytes(encoded))


def sign_decryption(handles: Sequence[str], encoded: bytes | str, private_keys: Iterable[Any]) -> bytes:
    message = encode_defunct(primitive=proof_digest(handles, encoded))
    signatures = [bytes(Account.sign_message(message, private_key=key).signature) for key in private_keys]
    if len(signatures) > 255:
        raise ValueError("a decryption proof carries at most 255 signatures")
    return bytes([len(signatures)]) + b"".join(signatures)


@dataclass(slots=True)
class DecryptionResponse:
    clear_values: list[int]
    abi_encoded_clear_values: bytes
    decryption_proof: bytes

    def to_payload(self) -> dict[str, Any]:
        return {
            "clear_values": [str(value) for value in self.clear_values],
            "abi_encoded_clear_values": encode_hex(self.abi_encoded_clear_values),
            "decryption_proof": encode_hex(self.decryption_proof),
        }


class KmsProofVerifier:
    """Check that enough distinct KMS signers attested to a decryption."""

    def __init__(self, signers: Iterable[str], threshold: int = 1) -> None:
        self._signers = frozenset(signer.lower() for signer in signers)
        if threshold < 1:
            raise ValueError("threshold must be at least one")
        if threshold > len(self._signers):
            raise ValueError("threshold cannot exceed the number of signers")
        self._threshold = threshold

    @property
    def threshold(self) -> int:
        return self._threshold

    def verify(self, handles: Sequence[str], encoded: bytes | str, proof: bytes | str) -> list[int]:
        try:
            raw_proof = _as_bytes(proof)
            values = decode_clear_values(encoded, len(handles))
        except ValueError as exc:
            raise InvalidDecryptionProof("proof and clear values must be hex encoded") from exc
        if not raw_proof:
            raise InvalidDecryptionProof("empty decryption proof")
        count = raw_proof[0]
        if len(raw_proof) != 1 + count * SIGNATURE_LENGTH:
            raise InvalidDecryptionProof("decryption proof length does not match its signature count")

        message = encode_defunct(primitive=proof_digest(handles, encoded))
        attested: set[str] = set()
        for index in range(count):
            start = 1 + index * SIGNATURE_LENGTH
            signature = raw_proof[start : start + SIGNATURE_LENGTH]
            try:
                recovered = Account.recover_message(message, signature=signature)
            except Exception as exc:  # eth-keys raises several unrelated types
                raise InvalidDecryptionProof("malformed KMS signature") from exc
            if recovered.lower() in self._signers:
                attested.add(recovered.lower())

        if len(attested) < self._threshold:
            raise InvalidDecryptionProof(
                f"{len(attested)} valid KMS signatures, {self._threshold} required"
            )
        return values


def verifier_from_settings(settings: Settings) -> KmsProofVerifier:
    signers = list(settings.kms_signers)
    if not signers:
        signers = [Account.from_key(key).address for key in settings.local_kms_private_keys]
    if not signers:
        raise ValueError("configure KMS_SIGNERS or LOCAL_KMS_PRIVATE_KEYS to verify decryptions")
    return KmsProofVerifier(signers, settings.kms_threshold)


__all__ = [
    "DecryptionResponse",
    "KmsProofVerifier",
    "decode_clear_values",
    "encode_clear_values",
    "proof_digest",
    "sign_decryption",
    "verifier_from_settings",
]

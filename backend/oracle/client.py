from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import httpx
from eth_utils import to_bytes
from loguru import logger

from app.core.config import settings
from app.core.errors import InvalidDecryptionProof
from app.services.decryption import DecryptionResponse, decode_clear_values

from .errors import MalformedOracleResponse, OracleError, OracleTimeout


class DecryptionOracle(Protocol):
    """Anything able to publicly decrypt handles with a KMS proof."""

    async def public_decrypt(self, handles: Sequence[str]) -> DecryptionResponse:
        """Return cleartexts, their ABI encoding and the KMS proof."""


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def parse_decryption_payload(payload: Any, expected: int) -> DecryptionResponse:
    """Validate a relayer response; snake_case and camelCase keys are accepted."""

    if isinstance(payload, Mapping) and isinstance(payload.get("response"), Mapping):
        payload = payload["response"]
    if not isinstance(payload, Mapping):
        raise MalformedOracleResponse("decryption response must be a JSON object")

    encoded = _pick(payload, "abi_encoded_clear_values", "abiEncodedClearValues")
    proof = _pick(payload, "decryption_proof", "decryptionProof")
    if not isinstance(encoded, str) or not isinstance(proof, str):
        raise MalformedOracleResponse("decryption response lacks encoded values or proof")

    try:
        encoded_bytes = to_bytes(hexstr=encoded)
        proof_bytes = to_bytes(hexstr=proof)
        values = decode_clear_values(encoded_bytes, expected)
    except (ValueError, InvalidDecryptionProof) as exc:
        raise MalformedOracleResponse(f"undecodable decryption response: {exc}") from exc

    declared = _pick(payload, "clear_values", "clearValues")
    if declared is not None:
        try:
            declared_values = [int(value) for value in declared]
        except (TypeError, ValueError) as exc:
            raise MalformedOracleResponse("clear values must be integers") from exc
        if declared_values != values:
            raise MalformedOracleResponse("clear values disagree with their ABI encoding")

    return DecryptionResponse(
        clear_values=values,
        abi_encoded_clear_values=encoded_bytes,
        decryption_proof=proof_bytes,
    )


class HttpDecryptionOracle:
    """Relayer client for the public decryption endpoint."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        path: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        resolved_base = base_url or (str(settings.oracle_base_url) if settings.oracle_base_url else None)
        if not resolved_base:
            raise ValueError("ORACLE_BASE_URL must be set to use the HTTP decryption oracle")
        self.base_url = resolved_base
        self.path = path or settings.oracle_public_decrypt_path
        self.timeout = timeout or settings.oracle_timeout_seconds
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=transport)

    async def public_decrypt(self, handles: Sequence[str]) -> DecryptionResponse:
        logger.info("Oracle POST {} handles={}", self.path, list(handles))
        try:
            response = await self.client.post(self.path, json={"handles": list(handles)})
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise OracleTimeout(f"decryption oracle timed out after {self.timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise OracleError(f"decryption oracle returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise OracleError(f"decryption oracle unreachable: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedOracleResponse("decryption oracle returned invalid JSON") from exc
        return parse_decryption_payload(payload, len(handles))

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "HttpDecryptionOracle":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


__all__ = ["DecryptionOracle", "HttpDecryptionOracle", "parse_decryption_payload"]

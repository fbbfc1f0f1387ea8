from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from app.services.decryption import encode_clear_values, sign_decryption
from oracle.client import HttpDecryptionOracle, parse_decryption_payload
from oracle.errors import MalformedOracleResponse, OracleError, OracleTimeout

from conftest import KMS_KEYS

HANDLES = ["0x" + "01" * 32, "0x" + "02" * 32]


def _signed_payload(values: list[int]) -> dict[str, object]:
    encoded = encode_clear_values(values)
    return {
        "clearValues": [str(value) for value in values],
        "abiEncodedClearValues": "0x" + encoded.hex(),
        "decryptionProof": "0x" + sign_decryption(HANDLES, encoded, KMS_KEYS).hex(),
    }


def _oracle(handler) -> HttpDecryptionOracle:
    return HttpDecryptionOracle(
        base_url="https://relayer.test",
        path="/v1/public-decrypt",
        timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


def _decrypt(oracle: HttpDecryptionOracle):
    async def _run():
        async with oracle:
            return await oracle.public_decrypt(HANDLES)

    return asyncio.run(_run())


def test_public_decrypt_posts_handles_and_parses_response():
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_signed_payload([100, 40]))

    response = _decrypt(_oracle(handler))

    assert seen == {"path": "/v1/public-decrypt", "body": {"handles": HANDLES}}
    assert response.clear_values == [100, 40]
    assert response.decryption_proof[0] == 2


def test_http_errors_are_retryable_oracle_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "busy"})

    with pytest.raises(OracleError) as excinfo:
        _decrypt(_oracle(handler))
    assert "503" in str(excinfo.value)


def test_timeouts_map_to_oracle_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(OracleTimeout):
        _decrypt(_oracle(handler))


def test_non_json_body_is_malformed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(MalformedOracleResponse):
        _decrypt(_oracle(handler))


def test_payload_must_agree_with_its_encoding():
    payload = _signed_payload([5, 6])
    payload["clearValues"] = ["5", "7"]

    with pytest.raises(MalformedOracleResponse):
        parse_decryption_payload(payload, 2)


def test_payload_accepts_snake_case_and_nested_response():
    encoded = encode_clear_values([1, 0])
    payload = {
        "response": {
            "abi_encoded_clear_values": "0x" + encoded.hex(),
            "decryption_proof": "0x00",
        }
    }

    response = parse_decryption_payload(payload, 2)
    assert response.clear_values == [1, 0]
    assert response.decryption_proof == b"\x00"


@pytest.mark.parametrize(
    "payload",
    [[], {"decryptionProof": "0x00"}, {"abiEncodedClearValues": "0x1234", "decryptionProof": "0x00"}],
)
def test_incomplete_payloads_are_malformed(payload):
    with pytest.raises(MalformedOracleResponse):
        parse_decryption_payload(payload, 2)

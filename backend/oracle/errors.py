"""Failures raised while talking to a decryption oracle."""

from __future__ import annotations


class OracleError(Exception):
    """Decryption did not complete; callers may retry."""


class OracleTimeout(OracleError):
    """The oracle did not answer within the configured timeout."""


class MalformedOracleResponse(OracleError):
    """The oracle answered with a payload that cannot be a valid decryption."""


__all__ = ["MalformedOracleResponse", "OracleError", "OracleTimeout"]

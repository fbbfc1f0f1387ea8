"""Encrypted value type: abstract operations and the plaintext-shadow backend."""

from .backend import BackendFactory, FheBackend
from .shadow import ShadowFheBackend
from .types import EncryptedInput, FheType

__all__ = [
    "BackendFactory",
    "EncryptedInput",
    "FheBackend",
    "FheType",
    "ShadowFheBackend",
]

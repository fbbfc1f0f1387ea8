"""Typed failures raised by the ledgers.

Every rejected precondition surfaces as a subclass of :class:`LedgerError` and
aborts the surrounding transaction; nothing is recovered locally.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger failures; ``code`` is stable across releases."""

    code = "ledger_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)


class OnlyAdmin(LedgerError):
    code = "only_admin"


class MarketNotFound(LedgerError):
    code = "market_not_found"


class MarketNotActive(LedgerError):
    code = "market_not_active"


class MarketNotResolved(LedgerError):
    code = "market_not_resolved"


class InvalidResult(LedgerError):
    code = "invalid_result"


class VotingClosed(LedgerError):
    code = "voting_closed"


class AlreadyBet(LedgerError):
    code = "already_bet"


class NoBet(LedgerError):
    code = "no_bet"


class AlreadyClaimed(LedgerError):
    code = "already_claimed"


class TotalsNotDecrypted(LedgerError):
    code = "totals_not_decrypted"


class TotalsAlreadyDecrypted(LedgerError):
    code = "totals_already_decrypted"


class InvalidDecryptionProof(LedgerError):
    code = "invalid_decryption_proof"


class InvalidInputProof(LedgerError):
    code = "invalid_input_proof"


class CiphertextNotFound(LedgerError):
    code = "ciphertext_not_found"


class AccessDenied(LedgerError):
    code = "access_denied"


class InvalidAmount(LedgerError):
    code = "invalid_amount"


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"


class InsufficientEncryptedBalance(LedgerError):
    code = "insufficient_encrypted_balance"


class InsufficientAllowance(LedgerError):
    code = "insufficient_allowance"


class UnwrapRequestNotFound(LedgerError):
    code = "unwrap_request_not_found"


class UnwrapAlreadyFinalized(LedgerError):
    code = "unwrap_already_finalized"


NOT_FOUND_ERRORS: tuple[type[LedgerError], ...] = (
    MarketNotFound,
    NoBet,
    CiphertextNotFound,
    UnwrapRequestNotFound,
)
FORBIDDEN_ERRORS: tuple[type[LedgerError], ...] = (OnlyAdmin, AccessDenied)


__all__ = [
    "AccessDenied",
    "AlreadyBet",
    "AlreadyClaimed",
    "CiphertextNotFound",
    "FORBIDDEN_ERRORS",
    "InsufficientAllowance",
    "InsufficientBalance",
    "InsufficientEncryptedBalance",
    "InvalidAmount",
    "InvalidDecryptionProof",
    "InvalidInputProof",
    "InvalidResult",
    "LedgerError",
    "MarketNotActive",
    "MarketNotFound",
    "MarketNotResolved",
    "NOT_FOUND_ERRORS",
    "NoBet",
    "OnlyAdmin",
    "TotalsAlreadyDecrypted",
    "TotalsNotDecrypted",
    "UnwrapAlreadyFinalized",
    "UnwrapRequestNotFound",
    "VotingClosed",
]

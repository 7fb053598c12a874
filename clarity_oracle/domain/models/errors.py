"""Error taxonomy for the assertion engine, evidence providers and ledger."""

from enum import Enum
from typing import Any, Dict, Optional


class RejectionReason(str, Enum):
    """Distinguishable causes for a rejected state transition."""

    EMPTY_QUESTION = "empty_question"
    QUESTION_TOO_LONG = "question_too_long"
    UNKNOWN_QUESTION = "unknown_question"
    EMPTY_PAYLOAD = "empty_payload"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    MALFORMED_PAYLOAD = "malformed_payload"
    TOO_MANY_CITATIONS = "too_many_citations"
    WRONG_BOND = "wrong_bond"
    ALREADY_PROPOSED = "already_proposed"
    ALREADY_DISPUTED = "already_disputed"
    ALREADY_RESOLVED = "already_resolved"
    ALREADY_FINALIZED = "already_finalized"
    NOT_PROPOSED = "not_proposed"
    NOT_DISPUTED = "not_disputed"
    CHALLENGE_WINDOW_CLOSED = "challenge_window_closed"
    CHALLENGE_WINDOW_OPEN = "challenge_window_open"
    UNAUTHORIZED = "unauthorized"
    TRANSFER_FAILED = "transfer_failed"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    OUT_OF_GAS = "out_of_gas"
    UNKNOWN_FUNCTION = "unknown_function"
    UNKNOWN_CONTRACT = "unknown_contract"


class OracleError(Exception):
    """Base exception for the oracle."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class AssertionRejected(OracleError):
    """Raised by the assertion state machine; the transition left no trace."""

    def __init__(self, reason: RejectionReason, message: Optional[str] = None):
        super().__init__(message or reason.value)
        self.reason = reason


# Evidence providers

class ProviderError(OracleError):
    """Raised when an evidence provider call fails."""

    def __init__(self, message: str, provider: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.provider = provider


class ProviderAuthError(ProviderError):
    """Credential rejected by the provider."""


class ProviderRateLimitError(ProviderError):
    """Provider throttled the request."""

    def __init__(
        self,
        message: str,
        provider: str,
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, provider, details)
        self.retry_after = retry_after


class ProviderTimeoutError(ProviderError):
    """Provider did not answer within the per-call timeout."""


class ProviderUnavailableError(ProviderError):
    """Transport failure or server-side error."""


class MalformedResponseError(ProviderError):
    """Response could not be decoded into an evidence verdict."""


def is_retryable_provider_error(exc: Exception) -> bool:
    """Timeouts, throttling and transport failures are worth another attempt."""
    return isinstance(exc, (ProviderTimeoutError, ProviderRateLimitError, ProviderUnavailableError))


# Ledger

class LedgerError(OracleError):
    """Base exception for ledger interaction."""


class TransactionReverted(LedgerError):
    """The ledger executed the transaction and rejected it."""

    def __init__(self, reason: RejectionReason, message: Optional[str] = None):
        super().__init__(message or f"Transaction reverted: {reason.value}")
        self.reason = reason


class LedgerUnavailableError(LedgerError):
    """Network-level failure talking to the ledger."""


class SubmissionTimeoutError(LedgerError):
    """Transaction confirmation was not observed in time."""


def is_retryable_submission_error(exc: Exception) -> bool:
    """Only transport-level causes are retried; reverts are deterministic."""
    return isinstance(exc, (LedgerUnavailableError, SubmissionTimeoutError))

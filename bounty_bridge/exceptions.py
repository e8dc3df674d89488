"""Exception taxonomy for the bounty bridge."""

from typing import Any, Optional


class BountyBridgeError(Exception):
    """Base class for exceptions in this package."""

    pass


class ConfigurationError(BountyBridgeError):
    """Raised when required settings are missing or malformed."""

    pass


class RpcError(BountyBridgeError):
    """Raised when a chain read or transport call fails.

    Keeps the raw provider message so callers can surface it unchanged.
    """

    def __init__(self, message: str, method: Optional[str] = None):
        super().__init__(message)
        self.method = method
        self.raw_message = message

    def __str__(self) -> str:
        if self.method:
            return f"{self.method}: {self.raw_message}"
        return self.raw_message


class ReconciliationError(RpcError):
    """Raised when the registry scan itself could not be performed."""

    pass


class NotFoundError(BountyBridgeError):
    """Raised when no on-chain repository matches a lookup."""

    pass


class AmbiguousMatchError(BountyBridgeError):
    """Raised in strict mode when several repositories match one owner."""

    def __init__(self, message: str, candidates: Optional[list] = None):
        super().__init__(message)
        self.candidates = candidates or []


class PartialAggregationError(BountyBridgeError):
    """Raised on request when an aggregation has failed issue records."""

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class UploadFailure(BountyBridgeError):
    """Raised when the metadata gateway rejects or fails an upload."""

    def __init__(self, message: str, outcome: Any = None):
        super().__init__(message)
        self.outcome = outcome


class MetadataFetchError(BountyBridgeError):
    """Raised when a content id cannot be fetched from any gateway."""

    def __init__(self, message: str, content_id: Optional[str] = None):
        super().__init__(message)
        self.content_id = content_id


class TransactionFailure(BountyBridgeError):
    """Raised when a transaction could not be submitted or did not succeed."""

    def __init__(
        self,
        message: str,
        transaction_hash: Optional[str] = None,
        outcome: Any = None,
    ):
        super().__init__(message)
        self.transaction_hash = transaction_hash
        self.outcome = outcome


class ReceiptTimeout(TransactionFailure):
    """Raised when no receipt shows up within the retry limit."""

    pass


class AuthenticationError(BountyBridgeError):
    """Raised when a wallet signature or nonce does not verify."""

    pass


class WriteRejected(BountyBridgeError):
    """Raised when a write is refused before any transaction is submitted."""

    def __init__(self, message: str, outcome: Any = None):
        super().__init__(message)
        self.outcome = outcome

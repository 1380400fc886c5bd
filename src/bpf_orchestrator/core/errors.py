"""
Error taxonomy.

We separate error types so callers can react correctly.
Example:
ConfigurationError at process start is fatal, nothing can be reconciled.
StoreError and LoaderError are transient and end in a retry after backoff.
SelectorError is recorded as a condition on the outcome object and retried,
since the blocking condition may clear on a later pass.
"""


class OrchestratorError(Exception):
    """Base class for all orchestrator exceptions."""


class ConfigurationError(OrchestratorError):
    """Raised when required process environment is missing or invalid."""


class StoreError(OrchestratorError):
    """Raised when the declarative store rejects a read or write."""


class NotFoundError(StoreError):
    """Raised when an object does not exist in the store."""


class AlreadyExistsError(StoreError):
    """Raised when creating an object whose name is taken."""


class ConflictError(StoreError):
    """Raised when an update carries a stale resource version."""


class LoaderError(OrchestratorError):
    """Raised when a loader call fails or times out."""


class SelectorError(OrchestratorError):
    """Raised when a spec carries a malformed selector or attach parameter."""


class BytecodeSelectorError(SelectorError):
    """Raised when the bytecode selector names neither or both locations."""

"""Shared exceptions for the application.

This module contains exception classes used across the credential pool,
job runner, sync engine and submission queue, so services can raise and
catch a common taxonomy without importing each other.
"""


class ConfigurationError(Exception):
    """Raised when required configuration is missing.

    Fatal for the current cycle only: a job that hits this error is marked
    failed and stays that way until the setting (or credential) is provided.
    """

    pass


class TransientNetworkError(Exception):
    """Raised for retriable upstream failures (timeouts, 5xx, connection errors).

    Non-fatal. Surfaced in the job status message; the next scheduled run
    simply tries again.

    Attributes:
        status_code: HTTP status code of the failed response, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class QuotaExhaustedError(Exception):
    """Raised when no credential has quota left, or the source rejects one.

    Distinct from TransientNetworkError so callers can rotate credentials or
    stop the cycle instead of retrying blindly.

    Attributes:
        credential_id: Credential the upstream rejected, or None when the
            whole pool is exhausted.
    """

    def __init__(self, message: str, credential_id: int | None = None) -> None:
        self.credential_id = credential_id
        super().__init__(message)


class UniquenessConflictError(Exception):
    """Raised when an item already exists for the same subscription.

    Expected under overlapping syncs. Handled by the per-item fallback path
    in SyncEngine and never surfaced to an end user.
    """

    def __init__(self, external_id: str, subscription_id: int) -> None:
        self.external_id = external_id
        self.subscription_id = subscription_id
        super().__init__(
            f"Item {external_id} already exists for subscription {subscription_id}"
        )


class JobTimeoutError(TimeoutError):
    """Raised by JobRunner when a job exceeds its timeout.

    Attributes:
        task_name: Name of the job that timed out.
        timeout_seconds: Configured timeout that was exceeded.
    """

    def __init__(self, task_name: str, timeout_seconds: float) -> None:
        self.task_name = task_name
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Job {task_name} timed out after {timeout_seconds:.0f}s")


class DuplicateCredentialError(ValueError):
    """Raised when adding a credential whose secret is already in the pool."""

    pass

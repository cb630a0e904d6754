"""Custom exceptions for codecontext."""


class CodeContextError(Exception):
    """Base class for all codecontext errors."""


class ValidationError(CodeContextError):
    """Raised when required input is missing or malformed."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        self.code = code
        super().__init__(message)


class RateLimitError(CodeContextError):
    """Raised when the enrichment provider rejects a call for rate limiting.

    Rate-limited jobs are rescheduled without consuming an attempt.
    """

    def __init__(self, message: str, retry_after_seconds: int | None = None):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class ProviderError(CodeContextError):
    """Raised for any non rate-limit failure of the enrichment provider."""


class StoreError(CodeContextError):
    """Raised when a knowledge store statement fails."""

    def __init__(self, message: str, sql: str | None = None):
        self.sql = sql
        super().__init__(message)


class InvalidJobTransition(CodeContextError):
    """Raised when a background job is moved to a status it cannot reach."""

    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Job {job_id} cannot move from '{current}' to '{requested}'"
        )

"""Application-wide exception hierarchy for Site Personalizer.

All custom exceptions subclass ``SitePersonalizerError``, enabling
consistent error handling and structured logging across the application.

Hierarchy::

    SitePersonalizerError
    ├── ExportValidationError
    ├── NoDataError
    ├── CrawlError
    │   └── CrawlRateLimitError     (retry_after: float)
    ├── GenerationError             (retry_after: float | None)
    ├── StorageError
    └── CreditError
        └── InsufficientCreditError
"""

from __future__ import annotations


class SitePersonalizerError(Exception):
    """Base class for all Site Personalizer exceptions.

    All application-specific exceptions inherit from this class so that
    callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """


# ---------------------------------------------------------------------------
# Submission exceptions
# ---------------------------------------------------------------------------


class ExportValidationError(SitePersonalizerError):
    """Raised when an export submission is missing or has invalid input.

    Surfaced to the caller immediately; no export job is created.

    Args:
        message: Human-readable description of the problem.
        field: Name of the offending input field, if any.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NoDataError(SitePersonalizerError):
    """Raised when a submission resolves to no rows or no website URLs."""


# ---------------------------------------------------------------------------
# Provider exceptions
# ---------------------------------------------------------------------------


class CrawlError(SitePersonalizerError):
    """Raised when the crawl provider fails for a single URL.

    A crawl error is scoped to one URL and never aborts the surrounding
    batch.

    Args:
        message: The provider's error message (or a network description).
        url: Normalized URL that failed.
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class CrawlRateLimitError(CrawlError):
    """Raised when the crawl provider rejects a request with a rate limit.

    Args:
        message: The provider's error message.
        retry_after: Seconds the provider asked us to wait. Defaults to 60.
        url: Normalized URL that was rejected.
    """

    def __init__(
        self,
        message: str,
        retry_after: float = 60.0,
        url: str | None = None,
    ) -> None:
        super().__init__(message, url=url)
        self.retry_after = retry_after


class GenerationError(SitePersonalizerError):
    """Raised when a text-generation call cannot produce output.

    Covers unknown templates, provider HTTP/network failures, and responses
    without choice content.

    Args:
        message: Human-readable description of the failure.
        template: Template name the generation was for.
        retry_after: Seconds advertised by the provider on HTTP 429, else
            ``None``.
    """

    def __init__(
        self,
        message: str,
        template: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.template = template
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Storage exceptions
# ---------------------------------------------------------------------------


class StorageError(SitePersonalizerError):
    """Raised when a required database read or write fails.

    Inside the background export path this marks the job ``failed``; it is
    never retried automatically.

    Args:
        message: Description of the failed operation.
        table: Table the operation targeted.
    """

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


# ---------------------------------------------------------------------------
# Credit exceptions
# ---------------------------------------------------------------------------


class CreditError(SitePersonalizerError):
    """Base class for credit-ledger errors."""


class InsufficientCreditError(CreditError):
    """Raised when a user does not have enough credits for an export.

    Args:
        required: Number of credits required.
        available: Number of credits the user currently holds.
        user_id: Identifier of the user (for logging).
    """

    def __init__(
        self,
        required: int,
        available: int,
        user_id: str | None = None,
    ) -> None:
        super().__init__(
            f"Insufficient credits: required {required}, available {available}"
        )
        self.required = required
        self.available = available
        self.user_id = user_id

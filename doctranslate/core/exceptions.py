"""
Errors raised across the document translation pipeline.

Each error knows whether retrying could help (``recoverable``); the retry
manager reads that flag, the task runner reads ``message`` for the status
shown to visitors.
"""

from typing import Any, Dict, Optional


class TranslationError(Exception):
    """Root of the pipeline's error tree.

    ``details`` holds small key/value facts (file name, page, provider)
    that end up in logs but never in API responses.
    """

    recoverable_by_default = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 recoverable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        self.recoverable = self.recoverable_by_default if recoverable is None else recoverable

    def __str__(self) -> str:
        if not self.details:
            return self.message
        facts = " ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{self.message} [{facts}]"


# --- documents -------------------------------------------------------------

class DocumentValidationError(TranslationError):
    """Upload rejected before a task exists (bad extension or content)."""


class ExtractionError(TranslationError):
    """Document opened fine but nothing in it is worth translating."""


class DocumentStateError(TranslationError):
    """Document lifecycle method called in the wrong order."""


class RebuildError(TranslationError):
    """Output document could not be produced."""


class ContentStreamError(RebuildError):
    """A page's content stream could not be tokenized or rewritten.

    Only that page is affected; the caller passes it through unchanged.
    """

    recoverable_by_default = True

    def __init__(self, message: str, page_index: Optional[int] = None,
                 offset: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        facts = dict(details or {})
        if page_index is not None:
            facts['page'] = page_index
        if offset is not None:
            facts['offset'] = offset
        super().__init__(message, facts)
        self.page_index = page_index
        self.offset = offset


# --- AI backends -----------------------------------------------------------

class ProviderError(TranslationError):
    """Anything that went wrong talking to an AI backend."""


class ProviderAuthenticationError(ProviderError):
    """401/403 from the backend. Needs a new key, retrying won't help."""


class ProviderRequestError(ProviderError):
    """Other 4xx: the backend refused the request as sent."""


class ProviderTransientError(ProviderError):
    """Timeout, dropped connection or 5xx."""

    recoverable_by_default = True


class ProviderResponseError(ProviderError):
    """Backend answered, but without a usable translation."""

    recoverable_by_default = True


class ProviderRateLimitError(ProviderError):
    """429 or quota exhausted; ``retry_after`` is the server's hint in seconds."""

    recoverable_by_default = True

    def __init__(self, message: str, retry_after: Optional[float] = None,
                 details: Optional[Dict[str, Any]] = None):
        facts = dict(details or {})
        if retry_after is not None:
            facts['retry_after'] = retry_after
        super().__init__(message, facts)
        self.retry_after = retry_after


class RetryExhaustedError(TranslationError):
    """A recoverable failure outlived its attempt budget.

    ``original_error`` is the last failure seen, ``attempts`` how many
    calls were made in total.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None,
                 attempts: int = 0):
        facts: Dict[str, Any] = {'attempts': attempts}
        if original_error is not None:
            facts['last_error'] = type(original_error).__name__
        super().__init__(message, facts)
        self.original_error = original_error
        self.attempts = attempts

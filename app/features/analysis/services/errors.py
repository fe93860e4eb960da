"""
Errors raised by provider adapters.

Every error carries its own retry classification so the retry policy never
has to guess from message text.
"""
from typing import Optional


def is_retryable_status(status_code: int) -> bool:
    """4xx is permanent except 408 (timeout) and 429 (rate limit); everything else may recover."""
    if 400 <= status_code < 500:
        return status_code in (408, 429)
    return True


class ProviderError(Exception):
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingCredentialError(ProviderError):
    retryable = False


class MissingModelError(ProviderError):
    retryable = False


class UnsupportedProviderError(ProviderError):
    retryable = False


class EmptyResponseError(ProviderError):
    retryable = True


class MalformedResponseError(ProviderError):
    """Reply was not valid JSON or did not fit the analysis shape."""

    retryable = True


class ProviderTimeoutError(ProviderError):
    retryable = True


class ProviderNetworkError(ProviderError):
    retryable = True


class ProviderHTTPError(ProviderError):
    def __init__(self, provider: str, status_code: int, body: Optional[str] = None):
        self.provider = provider
        self.status_code = status_code
        self.body = (body or "").strip()
        self.retryable = is_retryable_status(status_code)
        kind = "with status" if self.retryable else "with permanent client error"
        message = f"API request failed for {provider} {kind} {status_code}"
        if self.body:
            message = f"{message}: {self.body[:500]}"
        super().__init__(message)

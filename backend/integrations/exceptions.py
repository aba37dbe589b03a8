"""Typed exception hierarchy for upstream provider errors.

Provides structured exceptions for differentiated error handling
(auth errors vs transient network errors vs protocol/data issues).
"""


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name so callers can identify which provider failed.
    """

    def __init__(self, message: str, provider_name: str = ""):
        self.provider_name = provider_name
        super().__init__(message)

    @property
    def retriable(self) -> bool:
        return False


class ProviderAuthError(ProviderError):
    """Credential missing, expired, or invalidated upstream.

    Never retried; the sync driver demotes the link to degraded instead.
    """

    def __init__(self, message: str, provider_name: str = "", error_code: str = ""):
        self.error_code = error_code
        super().__init__(message, provider_name)


class ProviderConnectionError(ProviderError):
    """Network failures: timeouts, DNS resolution, connection refused.

    Retriable by default.
    """

    def __init__(self, message: str, provider_name: str = "", retriable: bool = True):
        self._retriable = retriable
        super().__init__(message, provider_name)

    @property
    def retriable(self) -> bool:
        return self._retriable


class ProviderAPIError(ProviderError):
    """HTTP 4xx/5xx responses from the provider API."""

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
        error_code: str = "",
    ):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message, provider_name)

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class ProviderDataError(ProviderError):
    """Malformed or unparseable response from the provider."""

    pass


class SyncProtocolError(ProviderDataError):
    """The change feed ended without its terminal cursor page.

    Results may be truncated, so the pull is abandoned and the stored
    cursor is left untouched.
    """

    pass

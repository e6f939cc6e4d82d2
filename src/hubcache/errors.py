"""Error taxonomy for hubcache.

Every failure carries a ``context`` mapping (reference, URL, path...) so the
caller can tell which artifact a failure belongs to without parsing strings.
"""

from __future__ import annotations


class HubCacheError(Exception):
    """Base class for all hubcache failures."""

    def __init__(self, message: str, *, context: dict[str, object] | None = None) -> None:
        self.message = message
        self.context = dict(context or {})
        super().__init__(self._render())

    def _render(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class MalformedReference(HubCacheError, ValueError):
    """A compact reference string does not have the expected shape."""

    def __init__(self, value: str, reason: str) -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"invalid reference {value!r}: {reason}")


class InvalidToken(HubCacheError, ValueError):
    """The supplied access token cannot be a valid hub token."""


# -- network -----------------------------------------------------------------


class FetchError(HubCacheError):
    """An HTTP exchange with the content host failed."""

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status: int | None = None,
        context: dict[str, object] | None = None,
    ) -> None:
        self.url = url
        self.status = status
        ctx: dict[str, object] = {"url": url}
        if status is not None:
            ctx["status"] = status
        ctx.update(context or {})
        super().__init__(message, context=ctx)


class AuthenticationError(FetchError):
    """The host answered 401."""

    def __init__(self, *, url: str, token_supplied: bool) -> None:
        self.token_supplied = token_supplied
        if token_supplied:
            message = "the access token was rejected, double check that it is valid"
        else:
            message = "a valid access token is likely required"
        super().__init__(message, url=url, status=401)


class RequestError(FetchError):
    """A non-retryable client error (4xx other than 401 and 429)."""


class RetryableServerError(FetchError):
    """A single transient failure: 429, 5xx, or a transport error."""


class RetryExhausted(FetchError):
    """Every attempt ended in a transient failure."""

    def __init__(self, *, url: str, attempts: int, status: int | None = None) -> None:
        self.attempts = attempts
        super().__init__(
            f"giving up after {attempts} attempts",
            url=url,
            status=status,
        )


# -- integrity ---------------------------------------------------------------


class IntegrityFormatError(HubCacheError):
    """A commit id or integrity tag does not have the required hash shape."""


class IntegrityMismatch(HubCacheError):
    """Downloaded bytes do not hash to the expected integrity tag."""


class MissingHeader(HubCacheError):
    """A response header required for resolution is absent."""

    def __init__(self, header: str, *, url: str) -> None:
        self.header = header
        super().__init__(f"missing header {header}", context={"url": url})


class ParseError(HubCacheError):
    """A response body or header value could not be decoded."""


# -- selection ---------------------------------------------------------------


class PathEscape(HubCacheError, ValueError):
    """A path would resolve outside of the directory it belongs to."""


class InvalidPattern(PathEscape):
    """A snapshot glob pattern is absolute or contains traversal segments."""


class NoMatch(HubCacheError):
    """No repository file matched the requested patterns."""

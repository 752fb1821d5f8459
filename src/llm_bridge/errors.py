"""Package specific exception hierarchy.

Every failure surfaced by a completion stream is one of the
:class:`CompletionError` subclasses below, so callers can decide about
retries without inspecting provider payloads.
"""

from __future__ import annotations


class LLMBridgeError(Exception):
    """Base exception for llm_bridge package."""


class UnsupportedProviderError(LLMBridgeError):
    """Raised when a provider has not been configured."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider '{provider}' is not available.")
        self.provider = provider


class CompletionError(LLMBridgeError):
    """Base class of the canonical completion error kinds.

    ``retryable`` is a hint for callers; this package never retries.
    """

    retryable = False
    provider: str | None = None
    retry_after: float | None = None


class PromptTooLarge(CompletionError):
    def __init__(self, tokens: int | None = None) -> None:
        super().__init__("prompt too large for context window")
        self.tokens = tokens


class MissingCredential(CompletionError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"missing {provider} API key")
        self.provider = provider


class RateLimitExceeded(CompletionError):
    retryable = True

    def __init__(self, provider: str, retry_after: float | None = None) -> None:
        super().__init__(f"{provider}'s API rate limit exceeded")
        self.provider = provider
        self.retry_after = retry_after


class ServerOverloaded(CompletionError):
    retryable = True

    def __init__(self, provider: str, retry_after: float | None = None) -> None:
        super().__init__(f"{provider}'s API servers are overloaded right now")
        self.provider = provider
        self.retry_after = retry_after


class ApiInternalServerError(CompletionError):
    retryable = True

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}'s API server reported an internal server error: {message}")
        self.provider = provider
        self.message = message


class UpstreamProviderError(CompletionError):
    """Error relayed by a gateway from the provider behind it."""

    def __init__(self, message: str, status: int, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.retry_after = retry_after
        self.retryable = status == 429 or status >= 500


class HttpResponseError(CompletionError):
    def __init__(self, provider: str, status: int, message: str) -> None:
        super().__init__(f"HTTP response error from {provider}'s API: status {status} - {message!r}")
        self.provider = provider
        self.status = status
        self.message = message


class BadRequestFormat(CompletionError):
    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"invalid request format to {provider}'s API: {message}")
        self.provider = provider
        self.message = message


class AuthenticationError(CompletionError):
    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"authentication error with {provider}'s API: {message}")
        self.provider = provider
        self.message = message


class PermissionError(CompletionError):  # noqa: A001
    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"permission error with {provider}'s API: {message}")
        self.provider = provider
        self.message = message


class ApiEndpointNotFound(CompletionError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} API endpoint not found")
        self.provider = provider


class _LocalFault(CompletionError):
    """A failure on our side of the wire; the cause is kept on ``error``."""

    description = "error"

    def __init__(self, provider: str, error: BaseException) -> None:
        super().__init__(f"{self.description} {provider} API")
        self.provider = provider
        self.error = error


class ApiReadResponseError(_LocalFault):
    description = "I/O error reading response from"
    retryable = True


class SerializeRequest(_LocalFault):
    description = "error serializing request to"


class BuildRequestBody(_LocalFault):
    description = "error building request body to"


class HttpSend(_LocalFault):
    description = "error sending HTTP request to"
    retryable = True


class DeserializeResponse(_LocalFault):
    description = "error deserializing response from"


class Other(CompletionError):
    """Escape hatch for failures that fit no other kind."""

    def __init__(self, cause: object) -> None:
        super().__init__(str(cause))
        self.cause = cause

# research/errors.py
from typing import Any, List, Optional

import openai


class DeepResearchError(Exception):
    """Base class for errors raised by the research pipeline."""


class RequestValidationError(DeepResearchError):
    """Field-level problems with a request. Never retried; surfaced to the caller as-is."""
    def __init__(self, errors: List[Any]):
        self.errors = list(errors)
        super().__init__("Request validation failed: " + ", ".join(f"{e.field}: {e.message}" for e in self.errors))


class SecurityRejection(RequestValidationError):
    """The query matched an injection pattern."""


class RateLimitExceeded(DeepResearchError):
    def __init__(self, result: Any):
        self.result = result
        super().__init__(f"Rate limit exceeded ({result.reason})")


class ExternalServiceError(DeepResearchError):
    """
    A failure talking to the research API.

    `kind` separates authentication, malformed-request, throttling, timeout and
    transport problems for operators; callers only ever see the message.
    """
    retryable = False

    def __init__(self, message: str, kind: str = "api_error", status_code: Optional[int] = None):
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def from_openai(cls, error: openai.OpenAIError) -> "ExternalServiceError":
        if isinstance(error, openai.APITimeoutError):
            kind = "timeout"
        elif isinstance(error, openai.APIConnectionError):
            kind = "connection"
        elif isinstance(error, openai.AuthenticationError):
            kind = "authentication"
        elif isinstance(error, openai.PermissionDeniedError):
            kind = "authentication"
        elif isinstance(error, (openai.BadRequestError, openai.UnprocessableEntityError)):
            kind = "invalid_request"
        elif isinstance(error, openai.RateLimitError):
            kind = "rate_limit"
        else:
            kind = "api_error"
        status_code = getattr(error, "status_code", None)
        return cls(f"OpenAI Deep Research failed: {error}", kind=kind, status_code=status_code)


class IncompleteResponseError(ExternalServiceError):
    """The model reported an unfinished response. The caller should re-issue the request."""
    retryable = True

    def __init__(self, message: str, usage: Any = None):
        self.usage = usage
        super().__init__(message, kind="incomplete")

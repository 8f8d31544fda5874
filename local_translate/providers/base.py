"""Provider base classes and error taxonomy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


@dataclass
class ProviderRequest:
    model: str
    messages: List[Dict[str, str]]
    stream: bool = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    extra: Dict[str, Any] | None = None
    headers: Dict[str, str] | None = None
    timeout: Optional[float] = None
    request_id: Optional[str] = None


@dataclass
class ProviderResponse:
    text: str
    raw: Any
    status_code: Optional[int] = None
    duration_ms: Optional[int] = None
    url: Optional[str] = None
    stop_reason: Optional[str] = None


class ProviderError(RuntimeError):
    error_type = "unknown_error"
    code = "UNKNOWN_ERROR"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        error_type: str | None = None,
        status_code: int | None = None,
        request_id: str | None = None,
        duration_ms: int | None = None,
        url: str | None = None,
        response_text: str | None = None,
        request_headers: Dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        if error_type:
            self.error_type = error_type
        self.status_code = status_code
        self.request_id = request_id
        self.duration_ms = duration_ms
        self.url = url
        self.response_text = response_text
        self.request_headers = request_headers


class NetworkError(ProviderError):
    error_type = "network_error"
    code = "NETWORK_ERROR"


class ApiError(ProviderError):
    """Non-2xx response from the chat-completion endpoint."""

    error_type = "http_error"
    code = "API_ERROR"


class RequestTimeout(ProviderError):
    error_type = "timeout"
    code = "TIMEOUT"


class StreamStalled(RequestTimeout):
    """No streamed data within the stall window."""

    error_type = "stream_stalled"


class InvalidResponse(ProviderError):
    """Malformed payload. Final for the attempt, still retried by the client."""

    error_type = "invalid_response"
    code = "INVALID_RESPONSE"


class TranslationCancelled(ProviderError):
    """Raised when a cancellation token fires. Terminal, never retried."""

    error_type = "cancelled"
    code = "CANCELLED"
    retryable = False


class InsecureEndpointError(ProviderError):
    """Endpoint violates the loopback/https trust rule."""

    error_type = "invalid_config"
    code = "API_ERROR"
    retryable = False


def error_code(exc: BaseException) -> str:
    if isinstance(exc, ProviderError):
        return exc.code
    return "UNKNOWN_ERROR"


class BaseProvider:
    def __init__(self, profile: Any):
        self.profile = profile

    def build_request(
        self,
        messages: List[Dict[str, str]],
        *,
        stream: bool = False,
        request_id: Optional[str] = None,
    ) -> ProviderRequest:
        raise NotImplementedError

    def send(self, request: ProviderRequest, cancel_token: Any = None) -> ProviderResponse:
        raise NotImplementedError

    def stream(self, request: ProviderRequest, cancel_token: Any = None):
        raise NotImplementedError

"""OpenAI-compatible chat-completion provider."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
import json
import logging
import queue
import re
import threading
import time
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urlparse

import requests
from urllib3.exceptions import ReadTimeoutError

from local_translate.registry.settings import TranslationProfile
from local_translate.utils.api_stats_protocol import sanitize_headers
from local_translate.validation import validate_api_endpoint

from .base import (
    ApiError,
    BaseProvider,
    InsecureEndpointError,
    InvalidResponse,
    NetworkError,
    ProviderError,
    ProviderRequest,
    ProviderResponse,
    RequestTimeout,
    StreamStalled,
    TranslationCancelled,
)

logger = logging.getLogger(__name__)

_VERSION_SEGMENT = re.compile(r"/v\d+(?:/|$)")
DEFAULT_TIMEOUT_SECONDS = 600
DEFAULT_STALL_TIMEOUT_SECONDS = 30.0
MAX_ERROR_TEXT_CHARS = 4000
POLL_INTERVAL_SECONDS = 0.05

_END_OF_BODY = object()


def _normalize_base_url(base_url: str) -> str:
    base_url = base_url.strip().rstrip("/")
    if not base_url:
        return base_url
    if base_url.endswith("/v1/chat/completions"):
        return base_url.rsplit("/chat/completions", 1)[0]

    path = (urlparse(base_url).path or "").lower()
    if not path or path == "/" or path.endswith("/v1") or _VERSION_SEGMENT.search(path):
        return base_url if path and path != "/" else f"{base_url}/v1"

    return base_url


def _build_url(endpoint: str) -> str:
    endpoint = endpoint.strip().rstrip("/")
    if not endpoint:
        return ""
    if endpoint.endswith("/chat/completions"):
        return endpoint
    return f"{_normalize_base_url(endpoint)}/chat/completions"


def _body_preview(resp: Any) -> str:
    try:
        body = (resp.text or "").strip()
    except (requests.RequestException, UnicodeDecodeError, AttributeError):
        return ""
    return body[:MAX_ERROR_TEXT_CHARS]


def _close_quietly(resp: Any) -> None:
    # unblocks a read in progress on another thread before closing
    shutdown = getattr(getattr(resp, "raw", None), "shutdown", None)
    if shutdown is not None:
        try:
            shutdown()
        except Exception as exc:
            logger.debug(f"Socket shutdown failed: {exc}")
    close = getattr(resp, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception as exc:
        logger.debug(f"Closing response failed: {exc}")


def _close_when_done(future: Future) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    _close_quietly(future.result())


def _is_read_timeout(exc: BaseException) -> bool:
    if isinstance(exc, requests.Timeout):
        return True
    return any(isinstance(arg, ReadTimeoutError) for arg in getattr(exc, "args", ()))


def _pump_lines(resp: Any, lines: "queue.Queue[Any]") -> None:
    try:
        for raw_line in resp.iter_lines():
            lines.put(raw_line)
    except Exception as exc:
        lines.put(exc)
    finally:
        lines.put(_END_OF_BODY)


class OpenAICompatProvider(BaseProvider):
    def __init__(
        self,
        profile: TranslationProfile,
        *,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT_SECONDS,
    ):
        super().__init__(profile)
        self.stall_timeout = stall_timeout
        self._session = requests.Session()
        self._transport: Optional[ThreadPoolExecutor] = None
        self._transport_lock = threading.Lock()

    @property
    def url(self) -> str:
        return _build_url(self.profile.api_endpoint)

    def close(self) -> None:
        with self._transport_lock:
            transport, self._transport = self._transport, None
        if transport is not None:
            transport.shutdown(wait=False)
        _close_quietly(self._session)

    def build_request(
        self,
        messages: List[Dict[str, str]],
        *,
        stream: bool = False,
        request_id: Optional[str] = None,
    ) -> ProviderRequest:
        profile = self.profile
        if not profile.model:
            raise ProviderError(
                "OpenAI-compatible provider requires model",
                error_type="invalid_config",
                request_id=request_id,
            )
        return ProviderRequest(
            model=profile.model,
            messages=messages,
            stream=stream,
            temperature=profile.temperature,
            max_tokens=profile.max_tokens,
            extra=dict(profile.params) if profile.params else None,
            headers=dict(profile.headers) if profile.headers else None,
            timeout=profile.timeout or DEFAULT_TIMEOUT_SECONDS,
            request_id=request_id,
        )

    def _check_endpoint(self, request: ProviderRequest) -> str:
        url = self.url
        ok, error = validate_api_endpoint(url)
        if not ok:
            raise InsecureEndpointError(
                f"Endpoint rejected ({error}): {url}",
                request_id=request.request_id,
                url=url,
            )
        return url

    def _headers(self, request: ProviderRequest) -> Dict[str, str]:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.profile.api_key:
            headers["Authorization"] = f"Bearer {self.profile.api_key}"
        if request.headers:
            headers.update({str(k): str(v) for k, v in request.headers.items()})
        return headers

    @staticmethod
    def _payload(request: ProviderRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": request.messages,
        }
        if request.extra:
            payload.update(request.extra)
        payload["stream"] = bool(request.stream)
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        return payload

    def _get_transport(self) -> ThreadPoolExecutor:
        with self._transport_lock:
            if self._transport is None:
                self._transport = ThreadPoolExecutor(
                    max_workers=4, thread_name_prefix="local-translate-http"
                )
            return self._transport

    def _post(
        self,
        request: ProviderRequest,
        url: str,
        cancel_token: Any,
        *,
        stream: bool,
    ) -> Any:
        """POST on a transport thread, returning as soon as the token fires."""
        headers = self._headers(request)
        safe_headers = sanitize_headers(headers)
        kwargs: Dict[str, Any] = {
            "headers": headers,
            "data": json.dumps(self._payload(request), ensure_ascii=False).encode("utf-8"),
            "timeout": request.timeout or DEFAULT_TIMEOUT_SECONDS,
        }
        if stream:
            kwargs["stream"] = True

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        start = time.perf_counter()
        future = self._get_transport().submit(self._session.post, url, **kwargs)
        while not future.done():
            if cancel_token is not None and cancel_token.cancelled:
                future.add_done_callback(_close_when_done)
                raise TranslationCancelled(
                    "Translation was cancelled",
                    request_id=request.request_id,
                    url=url,
                )
            wait([future], timeout=POLL_INTERVAL_SECONDS)

        duration_ms = int((time.perf_counter() - start) * 1000)
        try:
            resp = future.result()
        except requests.Timeout as exc:
            raise RequestTimeout(
                f"OpenAI-compatible request timeout: {exc}",
                request_id=request.request_id,
                duration_ms=duration_ms,
                url=url,
                request_headers=safe_headers,
            ) from exc
        except requests.RequestException as exc:
            raise NetworkError(
                f"OpenAI-compatible request failed: {exc}",
                request_id=request.request_id,
                duration_ms=duration_ms,
                url=url,
                request_headers=safe_headers,
            ) from exc

        if cancel_token is not None and cancel_token.cancelled:
            _close_quietly(resp)
            cancel_token.raise_if_cancelled()

        if resp.status_code >= 400:
            body_preview = _body_preview(resp)
            _close_quietly(resp)
            raise ApiError(
                f"OpenAI-compatible HTTP {resp.status_code}: {body_preview}",
                status_code=resp.status_code,
                request_id=request.request_id,
                duration_ms=duration_ms,
                url=url,
                response_text=body_preview,
                request_headers=safe_headers,
            )
        return resp

    def send(self, request: ProviderRequest, cancel_token: Any = None) -> ProviderResponse:
        url = self._check_endpoint(request)
        start = time.perf_counter()
        resp = self._post(request, url, cancel_token, stream=False)
        duration_ms = int((time.perf_counter() - start) * 1000)

        try:
            data = resp.json()
        except ValueError as exc:
            body_preview = _body_preview(resp)
            raise InvalidResponse(
                "OpenAI-compatible response is not JSON",
                error_type="invalid_json",
                status_code=resp.status_code,
                request_id=request.request_id,
                duration_ms=duration_ms,
                url=url,
                response_text=body_preview,
            ) from exc

        try:
            choice = data["choices"][0]
            text = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise InvalidResponse(
                "OpenAI-compatible response missing content",
                status_code=resp.status_code,
                request_id=request.request_id,
                duration_ms=duration_ms,
                url=url,
                response_text=_body_preview(resp),
            ) from exc
        if not isinstance(text, str):
            raise InvalidResponse(
                "OpenAI-compatible response content is not text",
                status_code=resp.status_code,
                request_id=request.request_id,
                duration_ms=duration_ms,
                url=url,
            )

        return ProviderResponse(
            text=text,
            raw=data,
            status_code=resp.status_code,
            duration_ms=duration_ms,
            url=url,
            stop_reason=choice.get("finish_reason") if isinstance(choice, dict) else None,
        )

    def stream(self, request: ProviderRequest, cancel_token: Any = None) -> Iterator[str]:
        """Yield ``delta.content`` fragments in arrival order.

        Ends on ``[DONE]`` or connection close. The profile timeout covers the
        wait for the response headers; once the body is being read,
        ``StreamStalled`` is raised when no line arrives within
        ``stall_timeout`` seconds.
        """
        url = self._check_endpoint(request)
        resp = self._post(request, url, cancel_token, stream=True)
        remove_callback = (
            cancel_token.add_callback(lambda: _close_quietly(resp))
            if cancel_token is not None
            else None
        )
        lines: "queue.Queue[Any]" = queue.Queue()
        threading.Thread(
            target=_pump_lines,
            args=(resp, lines),
            name=f"local-translate-stream-{request.request_id or 'anon'}",
            daemon=True,
        ).start()
        last_data_at = time.monotonic()
        try:
            while True:
                if cancel_token is not None and cancel_token.cancelled:
                    break
                try:
                    raw_line = lines.get(timeout=POLL_INTERVAL_SECONDS)
                except queue.Empty:
                    if time.monotonic() - last_data_at > self.stall_timeout:
                        raise StreamStalled(
                            f"No stream data for {self.stall_timeout}s",
                            request_id=request.request_id,
                            url=url,
                        )
                    continue
                if raw_line is _END_OF_BODY:
                    break
                if isinstance(raw_line, BaseException):
                    raise raw_line
                last_data_at = time.monotonic()
                if not raw_line:
                    continue
                line = (
                    raw_line.decode("utf-8", errors="replace")
                    if isinstance(raw_line, bytes)
                    else str(raw_line)
                ).strip()
                if not line.startswith("data:"):
                    continue
                data = line[5:].strip()
                if data == "[DONE]":
                    break
                try:
                    event = json.loads(data)
                except ValueError as exc:
                    logger.debug(f"Skipping malformed stream event: {exc}")
                    continue
                choices = event.get("choices") if isinstance(event, dict) else None
                if not choices:
                    continue
                delta = choices[0].get("delta") if isinstance(choices[0], dict) else None
                content = delta.get("content") if isinstance(delta, dict) else None
                if isinstance(content, str) and content:
                    yield content
        except StreamStalled:
            raise
        except Exception as exc:
            if cancel_token is not None and cancel_token.cancelled:
                raise TranslationCancelled(
                    "Translation was cancelled",
                    request_id=request.request_id,
                    url=url,
                ) from exc
            if _is_read_timeout(exc):
                raise StreamStalled(
                    f"Stream read timed out: {exc}",
                    request_id=request.request_id,
                    url=url,
                ) from exc
            if isinstance(exc, requests.RequestException):
                raise NetworkError(
                    f"OpenAI-compatible stream failed: {exc}",
                    request_id=request.request_id,
                    url=url,
                ) from exc
            raise
        finally:
            if remove_callback is not None:
                remove_callback()
            _close_quietly(resp)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

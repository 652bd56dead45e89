from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from crmops.core.config import Settings, get_settings
from crmops.metrics import observe_http_client_failure, observe_http_client_retry


logger = logging.getLogger("crmops.http")

NETWORK_ERROR_STATUS = 0
NETWORK_ERROR_TEXT = "Network Error"


class ApiError(Exception):
    """Failed call made through :class:`ApiClient`.

    ``status`` is the HTTP status code, or ``0`` when no response was received
    (connection failure or timeout). ``data`` holds the decoded JSON error body
    when the server sent one.
    """

    def __init__(self, message: str, status: int, status_text: str, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.status_text = status_text
        self.data = data

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    @property
    def is_retryable(self) -> bool:
        return self.status == NETWORK_ERROR_STATUS or self.status >= 500


@dataclass(slots=True)
class ApiClientConfig:
    base_url: str = ""
    timeout: float = 30.0
    retry_attempts: int = 3
    retry_delay: float = 1.0


@dataclass(slots=True)
class RequestConfig:
    timeout: float | None = None
    retry: bool = True
    retry_attempts: int | None = None
    headers: Mapping[str, str] | None = None
    params: Mapping[str, Any] | None = None


def api_client_config_from_settings(settings: Settings) -> ApiClientConfig:
    return ApiClientConfig(
        base_url=settings.api_client_base_url,
        timeout=settings.api_client_timeout_seconds,
        retry_attempts=settings.api_client_retry_attempts,
        retry_delay=settings.api_client_retry_delay_seconds,
    )


def _should_retry(exc: BaseException) -> bool:
    return isinstance(exc, ApiError) and exc.is_retryable


def _error_from_response(response: httpx.Response) -> ApiError:
    message = response.reason_phrase
    data: Any = None
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("error", "message", "details"):
            if data.get(key):
                message = str(data[key])
                break
    return ApiError(message, response.status_code, response.reason_phrase, data)


class ApiClient:
    def __init__(
        self,
        config: ApiClientConfig | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or ApiClientConfig()
        self._sleep = sleep
        self._clock = clock
        self._client = httpx.Client(transport=transport, timeout=httpx.Timeout(self.config.timeout))

    def __enter__(self) -> ApiClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def get(self, url: str, config: RequestConfig | None = None) -> Any:
        return self._request("GET", url, config=config)

    def post(self, url: str, data: Any = None, config: RequestConfig | None = None) -> Any:
        return self._request("POST", url, body=data, config=config)

    def put(self, url: str, data: Any = None, config: RequestConfig | None = None) -> Any:
        return self._request("PUT", url, body=data, config=config)

    def patch(self, url: str, data: Any = None, config: RequestConfig | None = None) -> Any:
        return self._request("PATCH", url, body=data, config=config)

    def delete(self, url: str, config: RequestConfig | None = None) -> Any:
        response = self._execute("DELETE", url, body=None, config=config)
        if not response.content:
            return {}
        return response.json()

    def _request(self, method: str, url: str, *, body: Any = None, config: RequestConfig | None = None) -> Any:
        response = self._execute(method, url, body=body, config=config)
        if not response.content:
            return None
        return response.json()

    def _execute(self, method: str, url: str, *, body: Any, config: RequestConfig | None) -> httpx.Response:
        request_config = config or RequestConfig()
        full_url = f"{self.config.base_url}{url}"
        attempts = 1
        if request_config.retry:
            configured = request_config.retry_attempts
            attempts = max(1, configured if configured is not None else self.config.retry_attempts)

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.config.retry_delay, exp_base=2),
            retry=retry_if_exception(_should_retry),
            before_sleep=self._before_retry(method, full_url, attempts),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(self._send, method, full_url, body, request_config)
        except ApiError as exc:
            observe_http_client_failure(method, exc.status)
            raise

    def _send(self, method: str, url: str, body: Any, config: RequestConfig) -> httpx.Response:
        headers: dict[str, str] = {}
        if body is not None:
            headers["Content-Type"] = "application/json"
        if config.headers:
            headers.update(config.headers)

        timeout = config.timeout if config.timeout is not None else self.config.timeout
        # httpx limits each phase separately; the deadline bounds the whole attempt.
        deadline = self._clock() + timeout
        try:
            with self._client.stream(
                method,
                url,
                json=body,
                headers=headers,
                params=dict(config.params) if config.params else None,
                timeout=httpx.Timeout(timeout),
            ) as streamed:
                self._check_deadline(deadline, timeout)
                raw = bytearray()
                for chunk in streamed.iter_raw():
                    raw.extend(chunk)
                    self._check_deadline(deadline, timeout)
                response = httpx.Response(
                    streamed.status_code,
                    headers=streamed.headers,
                    content=bytes(raw),
                    request=streamed.request,
                    extensions=streamed.extensions,
                )
        except httpx.TransportError as exc:
            raise ApiError(str(exc) or "Network request failed", NETWORK_ERROR_STATUS, NETWORK_ERROR_TEXT) from exc

        if response.is_success:
            return response
        raise _error_from_response(response)

    def _check_deadline(self, deadline: float, timeout: float) -> None:
        if self._clock() > deadline:
            raise ApiError(f"Request timed out after {timeout}s", NETWORK_ERROR_STATUS, NETWORK_ERROR_TEXT)

    def _before_retry(self, method: str, url: str, attempts: int) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome is not None else None
            delay = retry_state.next_action.sleep if retry_state.next_action is not None else 0.0
            status = exc.status if isinstance(exc, ApiError) else NETWORK_ERROR_STATUS
            cause = "network" if status == NETWORK_ERROR_STATUS else "server_error"
            observe_http_client_retry(method, cause)
            logger.warning(
                "http.retry",
                extra={
                    "method": method,
                    "url": url,
                    "status_code": status,
                    "attempt": retry_state.attempt_number,
                    "max_attempts": attempts,
                    "delay_ms": int(delay * 1000),
                    "error": str(exc) if exc is not None else None,
                },
            )

        return log_retry


def create_api_client(
    config: ApiClientConfig | None = None,
    *,
    transport: httpx.BaseTransport | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> ApiClient:
    return ApiClient(config, transport=transport, sleep=sleep, clock=clock)


@lru_cache
def get_api_client() -> ApiClient:
    return create_api_client(api_client_config_from_settings(get_settings()))

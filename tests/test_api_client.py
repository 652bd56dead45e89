from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Generator, Iterator

import httpx
import pytest

from crmops.clients.http import (
    ApiClient,
    ApiClientConfig,
    ApiError,
    RequestConfig,
    create_api_client,
    get_api_client,
)
from crmops.core.config import get_settings


BASE_URL = "http://crm.test"


class Recorder:
    def __init__(self, responder: Callable[[httpx.Request, int], httpx.Response]) -> None:
        self.responder = responder
        self.requests: list[httpx.Request] = []
        self.sleeps: list[float] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request, len(self.requests))

    def client(self, **config: object) -> ApiClient:
        return create_api_client(
            ApiClientConfig(base_url=BASE_URL, **config),  # type: ignore[arg-type]
            transport=httpx.MockTransport(self.handler),
            sleep=self.sleeps.append,
        )


@pytest.fixture(autouse=True)
def clear_cached_clients() -> Generator[None, None, None]:
    get_settings.cache_clear()
    get_api_client.cache_clear()
    yield
    get_settings.cache_clear()
    get_api_client.cache_clear()


def test_get_returns_parsed_json() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(200, json={"ok": True}))

    with recorder.client() as client:
        assert client.get("/api/ping") == {"ok": True}

    assert str(recorder.requests[0].url) == f"{BASE_URL}/api/ping"
    assert recorder.sleeps == []


def test_server_errors_retry_with_exponential_backoff() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(503, json={"error": "maintenance"}))

    with recorder.client() as client, pytest.raises(ApiError) as exc_info:
        client.get("/api/reports")

    assert len(recorder.requests) == 3
    assert recorder.sleeps == [1.0, 2.0]
    assert exc_info.value.status == 503
    assert exc_info.value.status_text == "Service Unavailable"
    assert exc_info.value.message == "maintenance"
    assert exc_info.value.data == {"error": "maintenance"}
    assert exc_info.value.is_retryable


def test_recovers_when_a_retry_succeeds() -> None:
    def responder(request: httpx.Request, attempt: int) -> httpx.Response:
        if attempt == 1:
            return httpx.Response(502)
        return httpx.Response(200, json={"records": []})

    recorder = Recorder(responder)

    with recorder.client(retry_delay=0.25) as client:
        assert client.get("/api/reports") == {"records": []}

    assert recorder.sleeps == [0.25]


def test_client_errors_are_not_retried() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(404, json={"error": "Not found"}))

    with recorder.client() as client, pytest.raises(ApiError) as exc_info:
        client.get("/api/missing")

    assert len(recorder.requests) == 1
    assert recorder.sleeps == []
    assert exc_info.value.status == 404
    assert exc_info.value.is_client_error
    assert str(exc_info.value) == "Not found"


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ({"error": "e", "message": "m", "details": "d"}, "e"),
        ({"message": "m", "details": "d"}, "m"),
        ({"details": "d"}, "d"),
        ({}, "Bad Request"),
    ],
)
def test_error_message_priority(body: dict[str, str], expected: str) -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(400, json=body))

    with recorder.client() as client, pytest.raises(ApiError) as exc_info:
        client.post("/api/things", {"name": "x"})

    assert exc_info.value.message == expected


def test_non_json_error_body_falls_back_to_reason_phrase() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(422, text="<html>nope</html>"))

    with recorder.client() as client, pytest.raises(ApiError) as exc_info:
        client.get("/api/things")

    assert exc_info.value.message == "Unprocessable Entity"
    assert exc_info.value.data is None


def test_timeouts_are_retried_as_network_errors() -> None:
    def responder(request: httpx.Request, attempt: int) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    recorder = Recorder(responder)

    with recorder.client(retry_attempts=2) as client, pytest.raises(ApiError) as exc_info:
        client.get("/api/slow")

    assert len(recorder.requests) == 2
    assert recorder.sleeps == [1.0]
    assert exc_info.value.status == 0
    assert exc_info.value.status_text == "Network Error"
    assert exc_info.value.message == "timed out"


class TrickleStream(httpx.SyncByteStream):
    """Body that arrives one byte at a time, each byte costing ``delay`` seconds."""

    def __init__(self, body: bytes, delay: float, advance: Callable[[float], None] = time.sleep) -> None:
        self.body = body
        self.delay = delay
        self.advance = advance

    def __iter__(self) -> Iterator[bytes]:
        for index in range(len(self.body)):
            self.advance(self.delay)
            yield self.body[index : index + 1]


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


TRICKLE_BODY = json.dumps({"ok": True, "padding": "x" * 12}).encode()


def test_slow_trickling_body_is_aborted_at_the_total_timeout() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(200, stream=TrickleStream(TRICKLE_BODY, 0.05)))

    started = time.monotonic()
    with recorder.client(timeout=0.3) as client, pytest.raises(ApiError) as exc_info:
        client.get("/api/trickle", RequestConfig(retry=False))
    elapsed = time.monotonic() - started

    assert len(TRICKLE_BODY) * 0.05 > 1.5
    assert elapsed < 1.0
    assert exc_info.value.status == 0
    assert exc_info.value.status_text == "Network Error"
    assert "timed out" in exc_info.value.message


def test_total_timeout_counts_as_a_retryable_failure() -> None:
    clock = FakeClock()
    recorder = Recorder(
        lambda request, attempt: httpx.Response(200, stream=TrickleStream(TRICKLE_BODY, 0.1, clock.advance))
    )
    client = create_api_client(
        ApiClientConfig(base_url=BASE_URL, timeout=0.5, retry_attempts=2),
        transport=httpx.MockTransport(recorder.handler),
        sleep=recorder.sleeps.append,
        clock=clock,
    )

    with client, pytest.raises(ApiError) as exc_info:
        client.get("/api/trickle")

    assert len(recorder.requests) == 2
    assert recorder.sleeps == [1.0]
    assert exc_info.value.status == 0


def test_body_that_arrives_within_the_timeout_is_returned() -> None:
    clock = FakeClock()
    recorder = Recorder(
        lambda request, attempt: httpx.Response(200, stream=TrickleStream(TRICKLE_BODY, 0.01, clock.advance))
    )
    client = create_api_client(
        ApiClientConfig(base_url=BASE_URL, timeout=5.0),
        transport=httpx.MockTransport(recorder.handler),
        sleep=recorder.sleeps.append,
        clock=clock,
    )

    with client:
        assert client.get("/api/trickle") == {"ok": True, "padding": "x" * 12}

    assert recorder.sleeps == []


def test_connection_failures_raise_network_error() -> None:
    def responder(request: httpx.Request, attempt: int) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    recorder = Recorder(responder)

    with recorder.client() as client, pytest.raises(ApiError) as exc_info:
        client.get("/api/down", RequestConfig(retry=False))

    assert len(recorder.requests) == 1
    assert exc_info.value.status == 0


def test_retry_can_be_disabled_per_request() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(500))

    with recorder.client() as client, pytest.raises(ApiError):
        client.get("/api/reports", RequestConfig(retry=False))

    assert len(recorder.requests) == 1
    assert recorder.sleeps == []


def test_retry_attempts_can_be_raised_per_request() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(500))

    with recorder.client() as client, pytest.raises(ApiError):
        client.get("/api/reports", RequestConfig(retry_attempts=5))

    assert len(recorder.requests) == 5
    assert recorder.sleeps == [1.0, 2.0, 4.0, 8.0]


def test_write_methods_send_json_bodies() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(200, json={"saved": True}))

    with recorder.client() as client:
        assert client.post("/api/a", {"name": "a"}) == {"saved": True}
        assert client.put("/api/b", {"name": "b"}) == {"saved": True}
        assert client.patch("/api/c", {"name": "c"}) == {"saved": True}
        client.post("/api/d")

    methods = [request.method for request in recorder.requests]
    assert methods == ["POST", "PUT", "PATCH", "POST"]
    assert recorder.requests[0].headers["content-type"] == "application/json"
    assert json.loads(recorder.requests[1].content) == {"name": "b"}
    assert recorder.requests[3].content == b""


def test_request_headers_and_params_are_forwarded() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(200, json={}))

    with recorder.client() as client:
        client.get("/api/q", RequestConfig(headers={"x-tenant-id": "tenant-a"}, params={"period": "week"}))

    request = recorder.requests[0]
    assert request.headers["x-tenant-id"] == "tenant-a"
    assert request.url.params["period"] == "week"


def test_delete_with_empty_body_returns_empty_dict() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(204))

    with recorder.client() as client:
        assert client.delete("/api/things/1") == {}


def test_delete_with_body_returns_parsed_json() -> None:
    recorder = Recorder(lambda request, attempt: httpx.Response(200, json={"deleted": 1}))

    with recorder.client() as client:
        assert client.delete("/api/things/1") == {"deleted": 1}


def test_retries_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="crmops.http")
    recorder = Recorder(lambda request, attempt: httpx.Response(500))

    with recorder.client() as client, pytest.raises(ApiError):
        client.get("/api/reports")

    retries = [record for record in caplog.records if record.getMessage() == "http.retry"]
    assert [getattr(record, "attempt", None) for record in retries] == [1, 2]
    assert all(getattr(record, "max_attempts", None) == 3 for record in retries)
    assert [getattr(record, "delay_ms", None) for record in retries] == [1000, 2000]
    assert all(getattr(record, "url", None) == f"{BASE_URL}/api/reports" for record in retries)


def test_default_client_is_built_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_CLIENT_BASE_URL", "http://reports.internal")
    monkeypatch.setenv("API_CLIENT_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("API_CLIENT_TIMEOUT_SECONDS", "2.5")

    client = get_api_client()

    assert client is get_api_client()
    assert client.config == ApiClientConfig(
        base_url="http://reports.internal",
        timeout=2.5,
        retry_attempts=5,
        retry_delay=1.0,
    )
    client.close()

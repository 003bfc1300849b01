"""Tests for DevTools network event correlation."""

import json
from unittest.mock import AsyncMock

import pytest

from vizpad_perf.config import TRACKED_ENDPOINTS
from vizpad_perf.data_models import NetworkRequestRecord
from vizpad_perf.network_recorder import NetworkRecorder


class FakeClock:
    def __init__(self, now: float = 10_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def body_payload(body) -> dict:
    return {"body": json.dumps(body), "base64Encoded": False}


def run_request(
    recorder: NetworkRecorder,
    clock: FakeClock,
    request_id: str,
    url: str,
    status: int = 200,
    elapsed_ms: float = 120.0,
    method: str = "POST",
) -> None:
    recorder.handle_event(
        NetworkRecorder.REQUEST_SENT,
        {"requestId": request_id, "request": {"url": url, "method": method}},
    )
    recorder.handle_event(
        NetworkRecorder.RESPONSE_RECEIVED,
        {"requestId": request_id, "response": {"status": status, "mimeType": "application/json"}},
    )
    clock.now += elapsed_ms
    recorder.handle_event(NetworkRecorder.LOADING_FINISHED, {"requestId": request_id})


async def test_chart_name_extracted_from_viz_response(clock: FakeClock) -> None:
    """A vizResponse body with viz.title labels the request with the chart name."""
    fetcher = AsyncMock(return_value=body_payload({"viz": {"title": "Revenue"}}))
    recorder = NetworkRecorder(body_fetcher=fetcher, clock=clock, user_id=3)

    run_request(recorder, clock, "r1", "https://bi.example.com/api/vizResponse?id=9")
    await recorder.drain()

    record = recorder.requests["r1"]
    assert record.chart_name == "Revenue"
    assert record.dataset_name is None
    assert record.raw_body_sample is None
    fetcher.assert_awaited_once_with("r1")


async def test_unrecognised_body_keeps_truncated_sample(clock: FakeClock) -> None:
    """With no matching path the record stores a bounded sample of the body."""
    recorder = NetworkRecorder(body_fetcher=AsyncMock(return_value=body_payload({"foo": 1})), clock=clock)

    run_request(recorder, clock, "r1", "https://bi.example.com/vizResponse")
    await recorder.drain()

    record = recorder.requests["r1"]
    assert record.extracted_field is None
    assert record.raw_body_sample == json.dumps({"foo": 1}, indent=2)
    assert len(record.raw_body_sample) <= 500


async def test_long_unrecognised_body_truncated(clock: FakeClock) -> None:
    body = {"rows": [{"value": i, "label": "x" * 20} for i in range(100)]}
    recorder = NetworkRecorder(body_fetcher=AsyncMock(return_value=body_payload(body)), clock=clock)

    run_request(recorder, clock, "r1", "https://bi.example.com/vizResponse")
    await recorder.drain()

    assert len(recorder.requests["r1"].raw_body_sample) == 500


async def test_dataset_name_extracted_from_tql_spark(clock: FakeClock) -> None:
    body = {"columns": [{"datasetName": "sales_2024"}, {"datasetName": "other"}]}
    recorder = NetworkRecorder(body_fetcher=AsyncMock(return_value=body_payload(body)), clock=clock)

    run_request(recorder, clock, "r1", "https://bi.example.com/tqlSpark")
    await recorder.drain()

    assert recorder.requests["r1"].dataset_name == "sales_2024"


async def test_duration_is_end_minus_start(clock: FakeClock) -> None:
    """Finalized records satisfy duration_ms = end_time - start_time >= 0."""
    recorder = NetworkRecorder(clock=clock)

    run_request(recorder, clock, "r1", "https://bi.example.com/businessViews", elapsed_ms=250.0, method="GET")

    record = recorder.requests["r1"]
    assert record.status == 200
    assert record.mime_type == "application/json"
    assert record.duration_ms == record.end_time - record.start_time == 250.0


async def test_duration_never_negative_and_set_once(clock: FakeClock) -> None:
    recorder = NetworkRecorder(clock=clock)
    recorder.on_request_sent({"requestId": "r1", "request": {"url": "https://x/api/config", "method": "GET"}})
    clock.now -= 50  # clock stepped backwards
    recorder.on_loading_finished({"requestId": "r1"})

    record = recorder.requests["r1"]
    assert record.duration_ms == 0.0

    clock.now += 1_000
    recorder.on_loading_finished({"requestId": "r1"})
    recorder.on_response_received({"requestId": "r1", "response": {"status": 500}})
    assert record.duration_ms == 0.0
    assert record.status is None


async def test_body_not_fetched_for_non_200_or_untracked(clock: FakeClock) -> None:
    fetcher = AsyncMock(return_value=body_payload({"viz": {"title": "Revenue"}}))
    recorder = NetworkRecorder(body_fetcher=fetcher, clock=clock)

    run_request(recorder, clock, "r1", "https://bi.example.com/vizResponse", status=500)
    run_request(recorder, clock, "r2", "https://bi.example.com/static/app.js", method="GET")
    await recorder.drain()

    fetcher.assert_not_awaited()


async def test_body_fetch_failure_is_swallowed(clock: FakeClock) -> None:
    """Evicted bodies and garbage payloads leave the record unlabelled."""
    fetcher = AsyncMock(side_effect=[RuntimeError("No resource with given identifier"), {"body": "<html>", "base64Encoded": False}])
    recorder = NetworkRecorder(body_fetcher=fetcher, clock=clock)

    run_request(recorder, clock, "r1", "https://bi.example.com/vizResponse")
    run_request(recorder, clock, "r2", "https://bi.example.com/vizResponse")
    await recorder.drain()

    for request_id in ("r1", "r2"):
        record = recorder.requests[request_id]
        assert record.is_finalized
        assert record.extracted_field is None
        assert record.raw_body_sample is None


async def test_events_for_unknown_requests_are_ignored(clock: FakeClock) -> None:
    recorder = NetworkRecorder(clock=clock)

    recorder.on_response_received({"requestId": "ghost", "response": {"status": 200}})
    recorder.on_loading_finished({"requestId": "ghost"})
    recorder.handle_event("Network.dataReceived", {"requestId": "ghost"})

    assert recorder.requests == {}


async def test_completed_requests_filters_and_sorts(clock: FakeClock) -> None:
    recorder = NetworkRecorder(clock=clock)
    run_request(recorder, clock, "fast", "https://bi.example.com/businessViews", elapsed_ms=20, method="GET")
    run_request(recorder, clock, "slow", "https://bi.example.com/vizResponse", status=404, elapsed_ms=900)
    run_request(recorder, clock, "asset", "https://bi.example.com/main.css", elapsed_ms=5000, method="GET")
    recorder.on_request_sent({"requestId": "pending", "request": {"url": "https://bi.example.com/vizpadView"}})
    recorder.add_record(NetworkRequestRecord(
        request_id="login-1", url="https://bi.example.com/api/login", method="POST",
        start_time=0.0, end_time=300.0, duration_ms=300.0, status=200,
    ))

    completed = recorder.completed_requests(TRACKED_ENDPOINTS)

    assert [r.request_id for r in completed] == ["slow", "login-1", "fast"]
    assert len(recorder.completed_requests()) == 4


async def test_idle_tracking(clock: FakeClock) -> None:
    recorder = NetworkRecorder(clock=clock)
    recorder.on_request_sent({"requestId": "r1", "request": {"url": "https://x/vizResponse"}})
    clock.now += 1_000
    assert recorder.is_idle(500) is False

    recorder.handle_event(NetworkRecorder.LOADING_FAILED, {"requestId": "r1", "errorText": "net::ERR_ABORTED"})
    assert recorder.is_idle(500) is False
    clock.now += 600
    assert recorder.is_idle(500) is True
    assert not recorder.requests["r1"].is_finalized

"""
Per-session network instrumentation.

Correlates DevTools Network.* events by request id into NetworkRequestRecord
entries and, for selected endpoints, pulls the response body to label the
request with the chart or dataset it served.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set

from .data_models import NetworkRequestRecord
from .json_extractor import DEFAULT_RULES, ExtractionRule, body_sample, find_rule, parse_body

logger = logging.getLogger(__name__)

# Returns the DevTools getResponseBody payload: {"body": str, "base64Encoded": bool}
BodyFetcher = Callable[[str], Awaitable[Dict[str, Any]]]


def _now_ms() -> float:
    return time.time() * 1000.0


class NetworkRecorder:
    REQUEST_SENT = "Network.requestWillBeSent"
    RESPONSE_RECEIVED = "Network.responseReceived"
    LOADING_FINISHED = "Network.loadingFinished"
    LOADING_FAILED = "Network.loadingFailed"
    EVENTS = (REQUEST_SENT, RESPONSE_RECEIVED, LOADING_FINISHED, LOADING_FAILED)

    def __init__(
        self,
        body_fetcher: Optional[BodyFetcher] = None,
        rules: Sequence[ExtractionRule] = DEFAULT_RULES,
        clock: Callable[[], float] = _now_ms,
        user_id: Optional[int] = None,
    ):
        self.body_fetcher = body_fetcher
        self.rules = tuple(rules)
        self._clock = clock
        self.user_id = user_id
        self.requests: Dict[str, NetworkRequestRecord] = {}
        self._captures: Set[asyncio.Task] = set()
        self._inflight: Set[str] = set()
        self._last_activity = clock()

    @property
    def _prefix(self) -> str:
        return f"User {self.user_id}: " if self.user_id is not None else ""

    def handle_event(self, method: str, params: Dict[str, Any]) -> None:
        """Dispatch a raw DevTools event to the matching handler."""
        if method == self.REQUEST_SENT:
            self.on_request_sent(params)
        elif method == self.RESPONSE_RECEIVED:
            self.on_response_received(params)
        elif method == self.LOADING_FINISHED:
            self.on_loading_finished(params)
        elif method == self.LOADING_FAILED:
            self.on_loading_failed(params)

    def _settle(self, request_id: str) -> None:
        self._inflight.discard(request_id)
        self._last_activity = self._clock()

    def is_idle(self, idle_ms: float) -> bool:
        """True when nothing has been in flight for at least `idle_ms`."""
        return not self._inflight and self._clock() - self._last_activity >= idle_ms

    def on_request_sent(self, params: Dict[str, Any]) -> None:
        request_id = params.get("requestId")
        request = params.get("request") or {}
        if not request_id:
            return
        # Redirects reuse the request id; the latest hop wins.
        self.requests[request_id] = NetworkRequestRecord(
            request_id=request_id,
            url=request.get("url", ""),
            method=request.get("method", "GET"),
            start_time=self._clock(),
            user_id=self.user_id,
        )
        self._inflight.add(request_id)
        self._last_activity = self.requests[request_id].start_time

    def on_response_received(self, params: Dict[str, Any]) -> None:
        record = self.requests.get(params.get("requestId"))
        if record is None or record.is_finalized:
            return
        response = params.get("response") or {}
        record.status = response.get("status")
        record.mime_type = response.get("mimeType")

    def on_loading_finished(self, params: Dict[str, Any]) -> None:
        request_id = params.get("requestId")
        self._settle(request_id)
        record = self.requests.get(request_id)
        if record is None or record.is_finalized:
            return
        end = max(self._clock(), record.start_time)
        record.end_time = end
        record.duration_ms = end - record.start_time

        matched = find_rule(record.url, self.rules)
        if matched is None or record.status != 200 or self.body_fetcher is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._capture_body(record, matched))
        except RuntimeError:
            logger.debug(f"{self._prefix}No running loop, skipping body capture for {record.url}")
            return
        self._captures.add(task)
        task.add_done_callback(self._captures.discard)

    def on_loading_failed(self, params: Dict[str, Any]) -> None:
        # Failed requests never get a duration and stay out of the report.
        request_id = params.get("requestId")
        self._settle(request_id)
        if request_id in self.requests:
            logger.debug(
                f"{self._prefix}Request failed: {self.requests[request_id].url} ({params.get('errorText', '')})"
            )

    async def _capture_body(self, record: NetworkRequestRecord, matched: ExtractionRule) -> None:
        try:
            payload = await self.body_fetcher(record.request_id)
            body = parse_body(payload.get("body"), bool(payload.get("base64Encoded")))
            if body is None:
                logger.debug(f"{self._prefix}Response body for {record.url} is not JSON")
                return
            extracted = matched.apply(body)
            if extracted is not None:
                record.extracted_field = extracted
                logger.info(f"📊 {self._prefix}{extracted.kind.replace('_', ' ')} captured: {extracted.value}")
            else:
                record.raw_body_sample = body_sample(body)
                logger.debug(f"{self._prefix}No {matched.kind} found in {matched.pattern} response")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Bodies can be evicted before we ask for them.
            logger.debug(f"{self._prefix}Body capture failed for {record.url}: {e}")

    def add_record(self, record: NetworkRequestRecord) -> None:
        """Register a request made outside the browser (e.g. API login)."""
        if record.user_id is None:
            record.user_id = self.user_id
        self.requests[record.request_id] = record

    async def drain(self, timeout_s: float = 5.0) -> None:
        """Wait for in-flight body captures; stragglers are cancelled."""
        pending = list(self._captures)
        if not pending:
            return
        _, not_done = await asyncio.wait(pending, timeout=timeout_s)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.debug(f"{self._prefix}Cancelled {len(not_done)} body captures at teardown")

    def completed_requests(self, tracked_endpoints: Optional[Iterable[str]] = None) -> List[NetworkRequestRecord]:
        """Finalized records, optionally limited to tracked endpoints, slowest first."""
        endpoints = list(tracked_endpoints) if tracked_endpoints is not None else None
        selected = [
            r for r in self.requests.values()
            if r.duration_ms and (endpoints is None or any(e in r.url for e in endpoints))
        ]
        return sorted(selected, key=lambda r: r.duration_ms, reverse=True)

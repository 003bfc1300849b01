import threading
import time
from datetime import datetime
from typing import List, Optional

from .data_models import ErrorRecord, MetricSample


class MetricsCollector:
    """Run-wide, append-only store of timing samples and errors.

    Shared by every session; appends take a lock so sessions may run as
    asyncio tasks or on separate threads.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self.start_time = clock()
        self._metrics: List[MetricSample] = []
        self._errors: List[ErrorRecord] = []
        self._lock = threading.Lock()

    def add_metric(self, user_id: int, metric_name: str, value: float, timestamp: Optional[float] = None) -> MetricSample:
        ts = self._clock() if timestamp is None else timestamp
        sample = MetricSample(
            user_id=user_id,
            metric_name=metric_name,
            value=value,
            timestamp=ts,
            duration_since_start=ts - self.start_time,
        )
        with self._lock:
            self._metrics.append(sample)
        return sample

    def add_error(self, user_id: int, error, step: str, screenshot_path: Optional[str] = None) -> ErrorRecord:
        if isinstance(error, ErrorRecord):
            record = error
            if record.user_id is None:
                record.user_id = user_id
        else:
            record = ErrorRecord(
                step=step,
                message=str(error),
                timestamp=datetime.now().isoformat(),
                screenshot_path=screenshot_path,
                user_id=user_id,
            )
        with self._lock:
            self._errors.append(record)
        return record

    @property
    def metrics(self) -> List[MetricSample]:
        with self._lock:
            return list(self._metrics)

    @property
    def errors(self) -> List[ErrorRecord]:
        with self._lock:
            return list(self._errors)

    def metrics_for(self, user_id: int) -> List[MetricSample]:
        return [m for m in self.metrics if m.user_id == user_id]

    def errors_for(self, user_id: int) -> List[ErrorRecord]:
        return [e for e in self.errors if e.user_id == user_id]

    def get_script_run_time(self) -> float:
        """Seconds elapsed since the collector was created."""
        return self._clock() - self.start_time

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

CHART_NAME = "chart_name"
DATASET_NAME = "dataset_name"


@dataclass(frozen=True)
class ExtractedField:
    kind: str
    value: str

    @property
    def chart_name(self) -> Optional[str]:
        return self.value if self.kind == CHART_NAME else None

    @property
    def dataset_name(self) -> Optional[str]:
        return self.value if self.kind == DATASET_NAME else None


@dataclass
class NetworkRequestRecord:
    request_id: str
    url: str
    method: str
    start_time: float
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    status: Optional[int] = None
    mime_type: Optional[str] = None
    extracted_field: Optional[ExtractedField] = None
    raw_body_sample: Optional[str] = None
    user_id: Optional[int] = None

    @property
    def is_finalized(self) -> bool:
        return self.duration_ms is not None

    @property
    def chart_name(self) -> Optional[str]:
        return self.extracted_field.chart_name if self.extracted_field else None

    @property
    def dataset_name(self) -> Optional[str]:
        return self.extracted_field.dataset_name if self.extracted_field else None


@dataclass
class ErrorRecord:
    step: str
    message: str
    timestamp: str
    screenshot_path: Optional[str] = None
    user_id: Optional[int] = None


@dataclass
class MetricSample:
    user_id: int
    metric_name: str
    value: float
    timestamp: float
    duration_since_start: float


@dataclass
class TestResult:
    """Outcome of one simulated user session.

    Owned by the session task that creates it. ``finalize`` is called once the
    browser has been torn down; any later mutation is a programming error.
    """

    user_id: int
    step_durations: Dict[str, float] = field(default_factory=dict)
    success: bool = False
    screenshots: List[str] = field(default_factory=list)
    errors: List[ErrorRecord] = field(default_factory=list)
    network_requests: List[NetworkRequestRecord] = field(default_factory=list)
    finalized: bool = False

    def _check_open(self) -> None:
        if self.finalized:
            raise RuntimeError(f"TestResult for user {self.user_id} is finalized")

    def record_duration(self, step: str, seconds: float) -> None:
        self._check_open()
        self.step_durations[step] = seconds

    def add_error(self, error: ErrorRecord) -> None:
        self._check_open()
        self.errors.append(error)
        self.success = False

    def add_screenshot(self, path: Optional[str]) -> None:
        self._check_open()
        if path:
            self.screenshots.append(path)

    def set_network_requests(self, records: List[NetworkRequestRecord]) -> None:
        self._check_open()
        self.network_requests = list(records)

    def finalize(self, success: bool) -> None:
        self._check_open()
        # A session never reports success once an error was recorded.
        self.success = success and not self.errors
        self.finalized = True

    @property
    def error_message(self) -> str:
        return "; ".join(e.message for e in self.errors)


@dataclass
class NetworkSummary:
    count: int = 0
    total_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    min_duration_ms: float = 0.0
    by_status: Dict[str, int] = field(default_factory=dict)


@dataclass
class PerformanceReport:
    columns: List[str]
    rows: List[Dict[str, Any]]
    all_requests: List[NetworkRequestRecord]
    top_requests: List[NetworkRequestRecord]
    network_summary: NetworkSummary
    averages: Dict[str, float]
    successful: int
    failed: int
    total_users: int
    script_run_time: float = 0.0
    generated_at: str = ""

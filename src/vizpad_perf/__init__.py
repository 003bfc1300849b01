"""
vizpad-perf - Concurrent Browser Performance Harness for Vizpad Dashboards

Drives N simultaneous browser sessions through login, dashboard load, tab
switches and filters, and reports per-step latency and slow network calls.
"""

__version__ = "1.0.0"

from .data_models import (
    ErrorRecord,
    ExtractedField,
    MetricSample,
    NetworkRequestRecord,
    NetworkSummary,
    PerformanceReport,
    TestResult,
)
from .config import RunConfig
from .condition_waiter import ConditionWaiter, WaitOutcome
from .network_recorder import NetworkRecorder
from .browser_session import BrowserSession, PlaywrightDriver
from .step_executor import StepExecutor, generic_retry
from .metrics import MetricsCollector
from .orchestrator import SessionOrchestrator, Step
from .report import generate_report
from .scenario import VizpadScenario

__all__ = [
    "BrowserSession",
    "ConditionWaiter",
    "ErrorRecord",
    "ExtractedField",
    "MetricSample",
    "MetricsCollector",
    "NetworkRecorder",
    "NetworkRequestRecord",
    "NetworkSummary",
    "PerformanceReport",
    "PlaywrightDriver",
    "RunConfig",
    "SessionOrchestrator",
    "Step",
    "StepExecutor",
    "TestResult",
    "VizpadScenario",
    "WaitOutcome",
    "generate_report",
    "generic_retry",
]

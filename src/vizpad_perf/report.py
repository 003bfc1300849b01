"""
Aggregation of session results into a PerformanceReport.

Pure functions only; persisting the report is report_writer's job.
"""

from collections import OrderedDict
from typing import Dict, List, Sequence, Tuple

from .config import RunConfig
from .data_models import NetworkRequestRecord, NetworkSummary, PerformanceReport, TestResult

# (column header, step durations summed into it)
BASE_COLUMNS: List[Tuple[str, Tuple[str, ...]]] = [
    ("Login Time (s)", ("login",)),
    ("API Load Time (s)", ("api_load",)),
    ("Vizpad Load (s)", ("vizpad_load", "chart_load")),
]

FILTER_COLUMNS: List[Tuple[str, Tuple[str, ...]]] = [
    ("Area Filter (s)", ("area_filter",)),
    ("Region Filter (s)", ("region_filter",)),
    ("Territory Filter (s)", ("territory_filter",)),
]

TIME_FILTER_COLUMN = ("Time Filter (s)", ("time_filter",))


def metric_columns(config: RunConfig) -> List[Tuple[str, Tuple[str, ...]]]:
    """Timed columns active for this run, in report order."""
    columns = list(BASE_COLUMNS)
    for i in range(1, config.tab_count + 1):
        columns.append((f"Tab Switch {i} (s)", (f"tab_switch_{i}",)))
    if config.enable_filters:
        columns.extend(FILTER_COLUMNS)
    if config.enable_time_filter:
        columns.append(TIME_FILTER_COLUMN)
    return columns


def _column_value(result: TestResult, steps: Sequence[str]) -> float:
    return sum(result.step_durations.get(step, 0.0) for step in steps)


def _duration(record: NetworkRequestRecord) -> float:
    return record.duration_ms or 0.0


def summarize_requests(requests: Sequence[NetworkRequestRecord]) -> NetworkSummary:
    if not requests:
        return NetworkSummary()
    durations = [_duration(r) for r in requests]
    total = sum(durations)
    by_status: Dict[str, int] = OrderedDict()
    for r in requests:
        key = str(r.status) if r.status is not None else "unknown"
        by_status[key] = by_status.get(key, 0) + 1
    return NetworkSummary(
        count=len(requests),
        total_duration_ms=total,
        avg_duration_ms=total / len(requests),
        max_duration_ms=max(durations),
        min_duration_ms=min(durations),
        by_status=dict(by_status),
    )


def generate_report(
    results: Sequence[TestResult],
    config: RunConfig,
    script_run_time: float = 0.0,
    top_k: int = 15,
    generated_at: str = "",
) -> PerformanceReport:
    """Build per-user rows, network rankings and success-only averages."""
    ordered = sorted(results, key=lambda r: r.user_id)
    timed = metric_columns(config)
    columns = ["User ID"] + [name for name, _ in timed] + ["Status", "Error Message"]

    rows = []
    for result in ordered:
        row = {"User ID": result.user_id}
        for name, steps in timed:
            row[name] = _column_value(result, steps)
        row["Status"] = "SUCCESS" if result.success else "FAILED"
        row["Error Message"] = result.error_message
        rows.append(row)

    successful = [r for r in ordered if r.success]
    averages = {}
    for name, steps in timed:
        values = [_column_value(r, steps) for r in successful]
        averages[name] = sum(values) / len(values) if values else 0.0

    all_requests = sorted(
        (req for r in ordered for req in r.network_requests),
        key=_duration,
        reverse=True,
    )

    return PerformanceReport(
        columns=columns,
        rows=rows,
        all_requests=all_requests,
        top_requests=all_requests[:top_k],
        network_summary=summarize_requests(all_requests),
        averages=averages,
        successful=len(successful),
        failed=len(ordered) - len(successful),
        total_users=len(ordered),
        script_run_time=script_run_time,
        generated_at=generated_at,
    )

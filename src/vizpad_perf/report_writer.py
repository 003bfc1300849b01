"""
Persistence of a PerformanceReport: CSV tables, a plain-text network log,
a JSON dump and an optional latency chart.
"""

import csv
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional

from .config import RunConfig
from .data_models import NetworkRequestRecord, PerformanceReport

logger = logging.getLogger(__name__)

NETWORK_CSV_COLUMNS = [
    "User ID", "Request ID", "Method", "Status", "Duration (ms)", "Chart Name",
    "Dataset Name", "MIME Type", "URL", "Start Time", "End Time",
]


def _fmt(value) -> str:
    if isinstance(value, float):
        return f"{value:.2f}"
    return "" if value is None else str(value)


def _label(req: NetworkRequestRecord) -> str:
    return req.chart_name or req.dataset_name or "N/A"


def _request_line(req: NetworkRequestRecord, with_mime: bool = False) -> str:
    status = str(req.status) if req.status is not None else "-"
    duration = f"{round(req.duration_ms or 0):>8} ms"
    mime = f" {(req.mime_type or '-'):<20}" if with_mime else ""
    return f"{req.method:<6} {status:<6} {duration}  {_label(req):<30}{mime} {req.url}"


def render_network_log(report: PerformanceReport, config: RunConfig) -> str:
    s = report.network_summary
    lines = [
        f"Network Performance Log - {report.generated_at}",
        f"Test URL: {config.vizpad_url}",
        f"Number of Users: {report.total_users}",
        f"Total Network Requests: {len(report.all_requests)}",
        f"Script Runtime: {report.script_run_time:.2f}s",
        "",
        f"Top {len(report.top_requests)} Slowest Network Requests:",
        f"{'Method':<6} {'Status':<6} {'Duration':>11}  {'Chart/Dataset Name':<30} URL",
        f"{'-' * 6} {'-' * 6} {'-' * 11}  {'-' * 30} {'-' * 50}",
    ]
    lines += [_request_line(r) for r in report.top_requests]
    lines += [
        "",
        "",
        "All Network Requests (sorted by duration):",
        f"{'Method':<6} {'Status':<6} {'Duration':>11}  {'Chart/Dataset Name':<30} {'MIME Type':<20} URL",
        f"{'-' * 6} {'-' * 6} {'-' * 11}  {'-' * 30} {'-' * 20} {'-' * 50}",
    ]
    lines += [_request_line(r, with_mime=True) for r in report.all_requests]
    lines += [
        "",
        "",
        "Network Performance Summary:",
        f"Total Requests: {s.count}",
        f"Total Duration: {s.total_duration_ms:.2f} ms",
        f"Average Duration: {s.avg_duration_ms:.2f} ms",
        f"Max Duration: {s.max_duration_ms:.0f} ms",
        f"Min Duration: {s.min_duration_ms:.0f} ms",
        "",
        "Requests by Status Code:",
    ]
    lines += [f"{status}: {count} requests" for status, count in s.by_status.items()]
    return "\n".join(lines) + "\n"


def write_results_csv(report: PerformanceReport, config: RunConfig, path: Path) -> None:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["Script Time (s)", "Number of Users", "Vizpad URL"])
        writer.writerow([_fmt(report.script_run_time), report.total_users, config.vizpad_url])
        writer.writerow([])
        writer.writerow(report.columns)
        for row in report.rows:
            writer.writerow([_fmt(row.get(col)) for col in report.columns])
        writer.writerow([])
        writer.writerow(["Average (successful sessions)"] + [
            _fmt(report.averages[col]) if col in report.averages else "" for col in report.columns[1:]
        ])


def write_network_csv(report: PerformanceReport, path: Path) -> None:
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=NETWORK_CSV_COLUMNS)
        writer.writeheader()
        for req in report.all_requests:
            writer.writerow({
                "User ID": req.user_id if req.user_id is not None else "N/A",
                "Request ID": req.request_id,
                "Method": req.method or "N/A",
                "Status": req.status if req.status is not None else "N/A",
                "Duration (ms)": round(req.duration_ms or 0),
                "Chart Name": req.chart_name or "N/A",
                "Dataset Name": req.dataset_name or "N/A",
                "MIME Type": req.mime_type or "N/A",
                "URL": req.url or "N/A",
                "Start Time": round(req.start_time),
                "End Time": round(req.end_time or 0),
            })


def write_latency_chart(report: PerformanceReport, path: Path) -> Optional[Path]:
    """Bar chart of average step latency; skipped when matplotlib is missing."""
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError:
        logger.warning("matplotlib not installed. Skipping latency chart. Install with: pip install 'vizpad-perf[charts]'")
        return None

    if not report.averages:
        return None
    labels = [name.replace(" (s)", "") for name in report.averages]
    values = list(report.averages.values())

    fig, ax = plt.subplots(figsize=(max(6, len(labels) * 1.2), 4.5))
    bars = ax.bar(labels, values, color="#4C72B0")
    for bar, value in zip(bars, values):
        ax.annotate(f"{value:.2f}", (bar.get_x() + bar.get_width() / 2, bar.get_height()),
                    ha="center", va="bottom", fontsize=8)
    ax.set_ylabel("Seconds (avg over successful users)")
    ax.set_title(f"Vizpad step latency, {report.total_users} users ({report.successful} ok, {report.failed} failed)")
    plt.setp(ax.get_xticklabels(), rotation=30, ha="right")
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def save_report(report: PerformanceReport, config: RunConfig, output_dir: Optional[Path] = None) -> Dict[str, Path]:
    """
    Persist every report artifact under `output_dir`.

    Each artifact is written independently; one failing does not stop the
    others. Returns the paths that were written.
    """
    out = Path(output_dir or config.output_dir)
    out.mkdir(parents=True, exist_ok=True)
    n = report.total_users
    targets = {
        "results_csv": out / f"vizpad_test_{n}_users.csv",
        "network_csv": out / f"network_requests_{n}_users.csv",
        "network_log": out / f"network_logs_{n}_users.txt",
        "json": out / f"vizpad_report_{n}_users.json",
        "chart": out / f"step_latency_{n}_users.png",
    }
    writers = {
        "results_csv": lambda p: write_results_csv(report, config, p),
        "network_csv": lambda p: write_network_csv(report, p),
        "network_log": lambda p: p.write_text(render_network_log(report, config), encoding="utf-8"),
        "json": lambda p: p.write_text(json.dumps(asdict(report), indent=2, default=str), encoding="utf-8"),
        "chart": lambda p: write_latency_chart(report, p),
    }

    written: Dict[str, Path] = {}
    for key, path in targets.items():
        try:
            if writers[key](path) is None and key == "chart":
                continue
            written[key] = path
            logger.info(f"📄 Saved {key.replace('_', ' ')}: {path}")
        except Exception as e:
            logger.error(f"❌ Failed to save {key.replace('_', ' ')} ({path}): {e}")
    return written


def format_summary(report: PerformanceReport) -> List[str]:
    """Console summary lines for the end of a run."""
    lines = [
        "=" * 60,
        "📊 VIZPAD PERFORMANCE TEST SUMMARY",
        "=" * 60,
        f"Total script runtime: {report.script_run_time:.2f}s",
        f"Users tested: {report.total_users}",
        f"✅ Successful: {report.successful}",
        f"❌ Failed: {report.failed}",
    ]
    if report.averages:
        lines.append("Averages (successful sessions):")
        lines += [f"  {name}: {value:.2f}" for name, value in report.averages.items()]
    if report.top_requests:
        lines.append(f"Slowest {len(report.top_requests)} tracked requests:")
        lines += [f"  {_request_line(r)}" for r in report.top_requests]
    return lines

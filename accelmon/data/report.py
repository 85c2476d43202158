"""CSV report export.

The report has a fixed layout::

    AccelMonitor Report
    Generated: <ISO time>
    Time Interval: <token>
    Sample Count: <n>

    STATISTICS
    Axis,Min,Max,Average,StdDev
    X,...
    Y,...
    Z,...

    RAW DATA
    Timestamp,X,Y,Z
    <ISO timestamp>,x,y,z      (one row per reading, optional)
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from datetime import datetime
from io import StringIO
from pathlib import Path
from typing import List, Optional, Sequence

from ..core.models import AXES, Reading, ReadingStatistics
from ..core.statistics import compute_statistics
from ..core.timeutil import parse_time_window, to_iso, utc_now


logger = logging.getLogger(__name__)

REPORT_TITLE = "AccelMonitor Report"
NO_DATA = "No data available for report"


@dataclass
class ReportData:
    time_interval: str
    timestamp: str
    stats: Optional[ReadingStatistics]
    sample_count: int
    raw_data: List[Reading] = field(default_factory=list)


def filter_by_time_window(
    readings: Sequence[Reading], time_window: str, now: Optional[datetime] = None
) -> List[Reading]:
    """Readings no older than ``time_window`` (``<N>m`` / ``<N>h``, default 30m)."""
    cutoff = (now or utc_now()) - parse_time_window(time_window)
    return [r for r in readings if r.timestamp >= cutoff]


def generate_report_data(
    time_window: str, readings: Sequence[Reading], now: Optional[datetime] = None
) -> ReportData:
    now = now or utc_now()
    selected = filter_by_time_window(readings, time_window, now)
    if not selected:
        return ReportData(time_interval=time_window, timestamp=to_iso(now), stats=None, sample_count=0)
    return ReportData(
        time_interval=time_window,
        timestamp=to_iso(now),
        stats=compute_statistics(selected),
        sample_count=len(selected),
        raw_data=selected,
    )


def _fmt(value: Optional[float]) -> str:
    return "" if value is None else repr(float(value))


def generate_csv_report(
    report: Optional[ReportData],
    include_raw: bool = True,
    generated_at: Optional[datetime] = None,
) -> str:
    if report is None or report.stats is None or report.stats.is_empty:
        return NO_DATA

    buf = StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow([REPORT_TITLE])
    writer.writerow([f"Generated: {to_iso(generated_at or utc_now())}"])
    writer.writerow([f"Time Interval: {report.time_interval}"])
    writer.writerow([f"Sample Count: {report.sample_count}"])
    writer.writerow([])

    writer.writerow(["STATISTICS"])
    writer.writerow(["Axis", "Min", "Max", "Average", "StdDev"])
    for axis in AXES:
        s = report.stats.axis(axis)
        writer.writerow([axis.upper(), _fmt(s.min), _fmt(s.max), _fmt(s.avg), _fmt(s.std_dev)])
    writer.writerow([])

    if include_raw and report.raw_data:
        writer.writerow(["RAW DATA"])
        writer.writerow(["Timestamp", "X", "Y", "Z"])
        for r in report.raw_data:
            writer.writerow([to_iso(r.timestamp), r.x, r.y, r.z])

    return buf.getvalue()


def write_report(content: str, path: Path) -> bool:
    """Write report text to ``path``; False (logged) on failure."""
    try:
        Path(path).write_text(content, encoding="utf-8")
    except OSError as exc:
        logger.error("Failed to write report", extra={"path": str(path), "error": str(exc)})
        return False
    logger.info("Report written", extra={"path": str(path), "bytes": len(content)})
    return True

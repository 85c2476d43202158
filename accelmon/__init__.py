"""AccelMonitor: live accelerometer telemetry monitor.

Readings streamed by a physics simulator into a time-series backend are
polled (or watched), normalized and merged into a bounded rolling buffer that
drives threshold alarms, short-horizon forecasts and CSV reports.
"""

__all__ = [
    "config",
    "core",
    "data",
    "monitor",
    "notifications",
    "utils",
]

"""Core primitives: readings, buffers, statistics, alarms and forecasting.

Nothing in here performs I/O; the ingestion side lives in ``accelmon.data``.
"""

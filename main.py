from __future__ import annotations

import signal
import threading
from pathlib import Path
from typing import Optional

import typer

from accelmon.config import load_config
from accelmon.data.pipeline import IngestionPipeline
from accelmon.data.report import NO_DATA, generate_csv_report, generate_report_data, write_report
from accelmon.data.simulator import AccelerometerSimulator
from accelmon.data.store import InMemoryTelemetryStore, build_store
from accelmon.monitor import MonitorSnapshot, TelemetryMonitor
from accelmon.notifications import CallbackNotifier
from accelmon.utils.logging import setup_logging


app = typer.Typer(add_completion=False)


def format_status(snap: MonitorSnapshot) -> str:
    head = snap.readings[0] if snap.readings else None
    latest = (
        f"x={head.x:+.3f} y={head.y:+.3f} z={head.z:+.3f} @ {head.timestamp:%H:%M:%S}"
        if head is not None
        else "no data"
    )
    line = f"samples={len(snap.readings)} visible={len(snap.visible)} alarms={len(snap.active_alarms)} | {latest}"
    if snap.predictions:
        nxt = snap.predictions[0]
        line += f" | next({snap.prediction_method}) x={nxt.x:+.3f} y={nxt.y:+.3f} z={nxt.z:+.3f}"
    return line


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, help="Path to config.yaml"),
    log_level: Optional[str] = typer.Option(None),
    simulate: bool = typer.Option(False, help="Feed the in-memory store with synthetic readings"),
) -> None:
    """Start the live monitor and print one status line per refresh."""
    cfg = load_config(config)
    setup_logging(log_level or cfg.env.LOG_LEVEL)

    store = build_store(cfg)
    simulator: Optional[AccelerometerSimulator] = None
    if simulate or isinstance(store, InMemoryTelemetryStore):
        simulator = AccelerometerSimulator(store)
        simulator.start(interval_sec=cfg.runtime.refresh_interval_sec)

    monitor = TelemetryMonitor(cfg, store, notifier=CallbackNotifier(typer.echo))
    stop_event = threading.Event()

    def handle_signal(signum, frame):  # noqa: ANN001, D401
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    monitor.init()
    typer.echo("Running. Press Ctrl+C to stop.")
    last_count = -1
    try:
        while not stop_event.is_set():
            snap = monitor.snapshot()
            if snap.update_count != last_count:
                last_count = snap.update_count
                typer.echo(format_status(snap))
            stop_event.wait(timeout=min(1.0, cfg.runtime.refresh_interval_sec))
    finally:
        monitor.dispose()
        if simulator is not None:
            simulator.stop()


@app.command()
def simulate(
    config: Optional[Path] = typer.Option(None, help="Path to config.yaml"),
    interval: float = typer.Option(1.0, help="Seconds between synthetic readings"),
    seed_count: int = typer.Option(0, help="Write this many back-dated readings first"),
) -> None:
    """Push synthetic accelerometer readings into the configured store."""
    cfg = load_config(config)
    setup_logging(cfg.env.LOG_LEVEL)
    store = build_store(cfg)
    simulator = AccelerometerSimulator(store)
    if seed_count:
        typer.echo(f"Seeded {simulator.seed(seed_count)} readings")

    stop_event = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop_event.set())
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())
    simulator.start(interval_sec=interval)
    typer.echo("Simulating. Press Ctrl+C to stop.")
    try:
        stop_event.wait()
    finally:
        simulator.stop()


@app.command()
def report(
    window: str = typer.Option("30m", help="Time window, e.g. 10m or 2h"),
    output: Path = typer.Option(Path("accel-monitor-report.csv")),
    raw: bool = typer.Option(True, "--raw/--no-raw", help="Include the RAW DATA section"),
    config: Optional[Path] = typer.Option(None, help="Path to config.yaml"),
) -> None:
    """Fetch the latest readings once and write a CSV report."""
    cfg = load_config(config)
    setup_logging(cfg.env.LOG_LEVEL)
    pipeline = IngestionPipeline.from_config(cfg, build_store(cfg))
    pipeline.fetch_cycle()
    content = generate_csv_report(generate_report_data(window, pipeline.readings), include_raw=raw)
    if content == NO_DATA:
        typer.echo(NO_DATA)
        raise typer.Exit(code=1)
    if not write_report(content, output):
        typer.echo(f"Failed to write {output}")
        raise typer.Exit(code=1)
    typer.echo(f"Wrote {output}")


@app.command()
def clear(config: Optional[Path] = typer.Option(None, help="Path to config.yaml")) -> None:
    """Delete all tracked readings in the backend."""
    cfg = load_config(config)
    setup_logging(cfg.env.LOG_LEVEL)
    pipeline = IngestionPipeline.from_config(cfg, build_store(cfg))
    if pipeline.clear():
        typer.echo("Cleared all readings.")
    else:
        typer.echo("Failed to clear readings.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

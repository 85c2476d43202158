from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from accelmon.config import AlarmConfig, AxisBounds, RuntimeConfig, load_config


def test_defaults() -> None:
    rt = RuntimeConfig()
    assert rt.refresh_interval_sec == 5.0
    assert rt.fetch_limit == 20
    assert rt.buffer_size == 1000
    assert rt.mode == "poll"
    assert set(rt.alarms.thresholds) == {"x", "y", "z"}
    assert rt.alarms.thresholds["z"] == AxisBounds(min=-10, max=10)
    assert rt.prediction.enabled is False


def test_load_yaml(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "refresh_interval_sec: 2\n"
        "mode: watch\n"
        "alarms:\n"
        "  thresholds:\n"
        "    x: {min: -3, max: 3}\n"
        "prediction:\n"
        "  enabled: true\n"
        "  method: exponential\n",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.runtime.refresh_interval_sec == 2
    assert cfg.runtime.mode == "watch"
    assert cfg.runtime.alarms.thresholds["x"].max == 3
    assert cfg.runtime.alarms.thresholds["y"].max == 10
    assert cfg.runtime.prediction.method == "exponential"


def test_invalid_yaml_values(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("refresh_interval_sec: 0\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid config.yaml"):
        load_config(path)


def test_missing_file_uses_defaults(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "absent.yaml")
    assert cfg.runtime == RuntimeConfig()


def test_threshold_validation() -> None:
    with pytest.raises(ValidationError):
        AxisBounds(min=5, max=1)
    with pytest.raises(ValidationError):
        AlarmConfig(thresholds={"w": {"min": 0, "max": 1}})

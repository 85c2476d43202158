from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml
from pydantic import ValidationError

from ..config import AlarmConfig, AxisBounds


logger = logging.getLogger(__name__)


class ThresholdStore:
    """Persist the alarm ThresholdSet as a small YAML document."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, AxisBounds]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            return AlarmConfig(thresholds=raw).thresholds
        except (OSError, yaml.YAMLError, ValidationError) as exc:
            logger.error("Failed to load thresholds", extra={"path": str(self.path), "error": str(exc)})
            return None

    def save(self, thresholds: Mapping[str, AxisBounds]) -> bool:
        data = {axis: bounds.model_dump() for axis, bounds in thresholds.items()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as fh:
                yaml.safe_dump(data, fh, sort_keys=True)
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Failed to save thresholds", extra={"path": str(self.path), "error": str(exc)})
            return False
        return True

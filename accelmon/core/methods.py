from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

from ..config import PredictionConfig
from .models import PredictedReading, Reading
from .predict import PredictionEngine


ForecastFunc = Callable[[Sequence[Reading]], List[PredictedReading]]


@dataclass
class ForecastSpec:
    key: str
    compute: ForecastFunc
    label: str
    points_ahead: int


def build_registry(engine: PredictionEngine, config: PredictionConfig) -> Dict[str, ForecastSpec]:
    def linear(readings: Sequence[Reading]) -> List[PredictedReading]:
        return engine.predict_linear(readings, config.linear_points)

    def exponential(readings: Sequence[Reading]) -> List[PredictedReading]:
        return engine.predict_exponential(readings, config.exponential_points, config.alpha)

    return {
        "linear": ForecastSpec(
            key="linear", compute=linear, label="Linear regression", points_ahead=config.linear_points
        ),
        "exponential": ForecastSpec(
            key="exponential",
            compute=exponential,
            label="Exponential smoothing",
            points_ahead=config.exponential_points,
        ),
    }

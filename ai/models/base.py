"""
ClinicFlow - Prediction Primitives
Shared scoring helpers, risk classification and JSON conversion for prediction outputs
"""

from __future__ import annotations
from dataclasses import fields, is_dataclass
from datetime import date, datetime
from typing import Any

import numpy as np

RISK_SCORE_CEILING = 0.95

# Upper bounds (exclusive) of the low and medium risk bands
LOW_RISK_UPPER = 0.3
MEDIUM_RISK_UPPER = 0.6

MODEL_TYPE_TO_PREDICTION_TYPE = {
    "no_show_prediction": "no_show_risk",
    "scheduling_optimization": "optimal_scheduling",
    "authorization_recommendation": "auth_recommendation",
    "ocr_extraction": "document_extraction",
}


class InvalidPredictionInput(ValueError):
    """Raised when a prediction input carries out-of-range or missing features."""


def classify_risk(score: float) -> str:
    """Map a risk score to its level. Shared by scoring, alerting and analytics."""
    if score < LOW_RISK_UPPER:
        return "low"
    if score < MEDIUM_RISK_UPPER:
        return "medium"
    return "high"


def clamp(value: float, low: float, high: float) -> float:
    return round(float(np.clip(value, low, high)), 4)


def percent(value: float) -> int:
    """Whole-number percentage, rounding halves up like the dashboard does."""
    return int(np.floor(value * 100 + 0.5))


def require_range(name: str, value, low=None, high=None, integer: bool = False) -> None:
    if value is None:
        raise InvalidPredictionInput(f"{name} is required")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidPredictionInput(f"{name} must be a number")
    # Counts, hours and weekdays index lookup tables
    if integer and not isinstance(value, int):
        raise InvalidPredictionInput(f"{name} must be a whole number")
    if low is not None and value < low:
        raise InvalidPredictionInput(f"{name} must be >= {low}")
    if high is not None and value > high:
        raise InvalidPredictionInput(f"{name} must be <= {high}")


def to_jsonable(value: Any) -> Any:
    """Recursively convert dataclasses and datetimes into JSON-safe structures."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))

"""
ClinicFlow - No-Show Risk Scoring Engine
Deterministic additive scoring of appointment/patient features into a risk score,
explainable risk factors and recommended interventions.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ai.models.base import (
    RISK_SCORE_CEILING,
    InvalidPredictionInput,
    classify_risk,
    clamp,
    parse_datetime,
    percent,
    require_range,
    to_jsonable,
)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

BASE_RISK = 0.3
NO_SHOW_WEIGHT = 0.15
NO_SHOW_CAP = 0.4
OFF_HOURS_WEIGHT = 0.1
EDGE_OF_WEEK_WEIGHT = 0.05
LONG_GAP_WEIGHT = 0.1
LONG_GAP_DAYS = 180
PRECIPITATION_WEIGHT = 0.05
PRECIPITATION_THRESHOLD = 0.5

EDGE_OF_WEEK_DAYS = {1, 5}  # Monday, Friday

REMINDER_RISK_THRESHOLD = 0.5
CONFIRMATION_RISK_THRESHOLD = 0.7


@dataclass(frozen=True)
class WeatherData:
    temperature: float = 0.0
    precipitation: float = 0.0
    wind_speed: float = 0.0
    conditions: str = ""

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["WeatherData"]:
        if not data:
            return None
        return cls(
            temperature=float(data.get("temperature", 0.0)),
            precipitation=float(data.get("precipitation", 0.0)),
            wind_speed=float(data.get("wind_speed", 0.0)),
            conditions=data.get("conditions", ""),
        )


@dataclass(frozen=True)
class NoShowPredictionInput:
    """Feature record for one appointment. Built by the caller, never mutated."""
    appointment_id: str
    patient_id: str
    previous_no_shows: int
    appointment_hour: int
    appointment_day_of_week: int
    days_since_last_appointment: int
    weather_conditions: Optional[WeatherData] = None
    appointment_time: Optional[datetime] = None
    appointment_type: Optional[str] = None
    provider_id: Optional[str] = None
    patient_age: Optional[int] = None
    patient_gender: Optional[str] = None
    previous_appointments: int = 0
    insurance_type: Optional[str] = None
    distance_to_clinic: Optional[float] = None
    reminders_sent: int = 0

    def __post_init__(self):
        if not self.appointment_id:
            raise InvalidPredictionInput("appointment_id is required")
        require_range("previous_no_shows", self.previous_no_shows, low=0, integer=True)
        require_range("appointment_hour", self.appointment_hour, low=0, high=23, integer=True)
        require_range("appointment_day_of_week", self.appointment_day_of_week, low=0, high=6, integer=True)
        require_range("days_since_last_appointment", self.days_since_last_appointment, low=0, integer=True)
        require_range("previous_appointments", self.previous_appointments, low=0, integer=True)
        require_range("reminders_sent", self.reminders_sent, low=0, integer=True)

    @classmethod
    def from_dict(cls, data: dict) -> "NoShowPredictionInput":
        appointment_time = data.get("appointment_time")
        return cls(
            appointment_id=data.get("appointment_id"),
            patient_id=data.get("patient_id"),
            previous_no_shows=data.get("previous_no_shows"),
            appointment_hour=data.get("appointment_hour"),
            appointment_day_of_week=data.get("appointment_day_of_week"),
            days_since_last_appointment=data.get("days_since_last_appointment"),
            weather_conditions=WeatherData.from_dict(data.get("weather_conditions")),
            appointment_time=parse_datetime(appointment_time) if appointment_time else None,
            appointment_type=data.get("appointment_type"),
            provider_id=data.get("provider_id"),
            patient_age=data.get("patient_age"),
            patient_gender=data.get("patient_gender"),
            previous_appointments=data.get("previous_appointments", 0),
            insurance_type=data.get("insurance_type"),
            distance_to_clinic=data.get("distance_to_clinic"),
            reminders_sent=data.get("reminders_sent", 0),
        )

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass(frozen=True)
class RiskFactor:
    factor: str
    impact: float
    description: str


@dataclass(frozen=True)
class InterventionRecommendation:
    type: str
    description: str
    priority: int
    estimated_impact: float


@dataclass(frozen=True)
class NoShowPrediction:
    result: str
    risk_score: float
    risk_level: str
    probability: float
    factors: tuple = field(default_factory=tuple)
    recommendations: tuple = field(default_factory=tuple)
    interventions: tuple = field(default_factory=tuple)
    explanation: str = ""

    @property
    def confidence(self) -> float:
        return self.risk_score

    def to_dict(self) -> dict:
        return to_jsonable(self)

    @classmethod
    def from_dict(cls, data: dict) -> "NoShowPrediction":
        return cls(
            result=data["result"],
            risk_score=data["risk_score"],
            risk_level=data["risk_level"],
            probability=data.get("probability", data["risk_score"]),
            factors=tuple(RiskFactor(**f) for f in data.get("factors", [])),
            recommendations=tuple(data.get("recommendations", [])),
            interventions=tuple(InterventionRecommendation(**i) for i in data.get("interventions", [])),
            explanation=data.get("explanation", ""),
        )


def top_factors(prediction: NoShowPrediction, n: int = 3, order: str = "declared") -> list[RiskFactor]:
    """
    First n factors. "declared" keeps evaluation order (what the scoring emits);
    "impact" ranks by descending impact, ties keeping evaluation order.
    """
    factors = list(prediction.factors)
    if order == "impact":
        factors = sorted(factors, key=lambda f: -f.impact)
    elif order != "declared":
        raise ValueError(f"Unknown factor order: {order}")
    return factors[:n]


def _build_factors(features: NoShowPredictionInput, no_show_impact: float) -> list[RiskFactor]:
    hour = features.appointment_hour
    day = features.appointment_day_of_week
    precipitation = features.weather_conditions.precipitation if features.weather_conditions else 0.0

    candidates = [
        RiskFactor(
            factor="Previous No-Shows",
            impact=no_show_impact,
            description=f"Patient has {features.previous_no_shows} previous no-shows",
        ),
        RiskFactor(
            factor="Appointment Time",
            impact=OFF_HOURS_WEIGHT if (hour < 9 or hour > 16) else 0.0,
            description=f"Appointment scheduled at {hour}:00",
        ),
        RiskFactor(
            factor="Day of Week",
            impact=EDGE_OF_WEEK_WEIGHT if day in EDGE_OF_WEEK_DAYS else 0.0,
            description=f"Appointment on {DAY_NAMES[day]}",
        ),
        RiskFactor(
            factor="Time Since Last Visit",
            impact=LONG_GAP_WEIGHT if features.days_since_last_appointment > LONG_GAP_DAYS else 0.0,
            description=f"{features.days_since_last_appointment} days since last appointment",
        ),
        RiskFactor(
            factor="Weather",
            impact=PRECIPITATION_WEIGHT if precipitation > PRECIPITATION_THRESHOLD else 0.0,
            description=f"Precipitation level {precipitation:.2f} forecast",
        ),
    ]
    return [f for f in candidates if f.impact > 0]


def _build_interventions(risk_score: float) -> list[InterventionRecommendation]:
    interventions = []
    if risk_score > REMINDER_RISK_THRESHOLD:
        interventions.append(InterventionRecommendation(
            type="reminder",
            description="Send additional reminder 24 hours before appointment",
            priority=1,
            estimated_impact=0.15,
        ))
    if risk_score > CONFIRMATION_RISK_THRESHOLD:
        interventions.append(InterventionRecommendation(
            type="confirmation",
            description="Require confirmation call 48 hours before appointment",
            priority=2,
            estimated_impact=0.25,
        ))
    return interventions


def predict_no_show_risk(features: NoShowPredictionInput) -> NoShowPrediction:
    """Score one appointment. Pure: no I/O, same input always yields the same output."""
    no_show_impact = round(min(features.previous_no_shows * NO_SHOW_WEIGHT, NO_SHOW_CAP), 4)
    factors = _build_factors(features, no_show_impact)

    risk_score = clamp(BASE_RISK + sum(f.impact for f in factors), 0.0, RISK_SCORE_CEILING)
    risk_level = classify_risk(risk_score)
    interventions = _build_interventions(risk_score)
    pct = percent(risk_score)

    return NoShowPrediction(
        result=risk_level,
        risk_score=risk_score,
        risk_level=risk_level,
        probability=risk_score,
        factors=tuple(factors),
        recommendations=tuple(
            [f"Risk level: {risk_level.upper()}", f"Estimated no-show probability: {pct}%"]
            + [i.description for i in interventions]
        ),
        interventions=tuple(interventions),
        explanation=(
            f"Based on historical patterns and patient factors, this appointment has a "
            f"{pct}% probability of no-show."
        ),
    )


class NoShowScorer(ABC):
    """Capability interface so a served model can replace the rule engine."""

    model_version = "unversioned"

    @abstractmethod
    def predict(self, features: NoShowPredictionInput) -> NoShowPrediction:
        ...


class RuleBasedNoShowScorer(NoShowScorer):
    model_version = "no-show-rules-v1"

    def predict(self, features: NoShowPredictionInput) -> NoShowPrediction:
        return predict_no_show_risk(features)

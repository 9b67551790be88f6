"""
ClinicFlow - Schedule Optimization
Greedy slot placement and utilization/revenue projections for a provider's date range
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import numpy as np

from ai.models.base import InvalidPredictionInput, parse_datetime, percent, require_range, to_jsonable

PLACEMENT_CONFIDENCE = 0.85
MAX_ALTERNATIVE_SLOTS = 2


@dataclass(frozen=True)
class ScheduleEconomics:
    """Per provider-day assumptions behind the projected aggregates."""
    daily_slot_capacity: int = 16
    max_utilization: float = 0.95
    no_show_rate: float = 0.15
    revenue_per_appointment: float = 150.0
    conflict_resolution_ratio: float = 0.1

    @classmethod
    def from_config(cls, config) -> "ScheduleEconomics":
        return cls(
            daily_slot_capacity=config.get("SCHEDULE_DAILY_SLOT_CAPACITY", cls.daily_slot_capacity),
            no_show_rate=config.get("SCHEDULE_NO_SHOW_RATE", cls.no_show_rate),
            revenue_per_appointment=config.get("SCHEDULE_REVENUE_PER_APPOINTMENT", cls.revenue_per_appointment),
        )


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    available: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "TimeSlot":
        return cls(
            start=parse_datetime(data["start"]),
            end=parse_datetime(data["end"]),
            available=data.get("available", True),
        )


@dataclass(frozen=True)
class AppointmentRequest:
    patient_id: str
    appointment_type: str
    duration: int
    priority: str = "medium"
    preferred_times: tuple = field(default_factory=tuple)
    no_show_risk: Optional[float] = None

    def __post_init__(self):
        require_range("duration", self.duration, low=1)


@dataclass(frozen=True)
class SchedulingConstraints:
    working_hours: dict = field(default_factory=dict)
    break_times: tuple = field(default_factory=tuple)
    blocked_times: tuple = field(default_factory=tuple)
    max_consecutive_appointments: int = 0
    buffer_time: int = 0


@dataclass(frozen=True)
class SchedulingOptimizationInput:
    provider_id: str
    start: datetime
    end: datetime
    appointment_requests: tuple = field(default_factory=tuple)
    constraints: SchedulingConstraints = field(default_factory=SchedulingConstraints)
    preferences: dict = field(default_factory=dict)

    def __post_init__(self):
        if not self.provider_id:
            raise InvalidPredictionInput("provider_id is required")
        if self.end < self.start:
            raise InvalidPredictionInput("date_range end must not precede start")

    @classmethod
    def from_dict(cls, data: dict) -> "SchedulingOptimizationInput":
        date_range = data.get("date_range") or {}
        if "start" not in date_range or "end" not in date_range:
            raise InvalidPredictionInput("date_range with start and end is required")
        constraints = data.get("constraints") or {}
        requests = []
        for i, req in enumerate(data.get("appointment_requests", [])):
            try:
                requests.append(AppointmentRequest(
                    patient_id=req.get("patient_id"),
                    appointment_type=req.get("appointment_type", ""),
                    duration=req.get("duration"),
                    priority=req.get("priority", "medium"),
                    preferred_times=tuple(TimeSlot.from_dict(s) for s in req.get("preferred_times", [])),
                    no_show_risk=req.get("no_show_risk"),
                ))
            except InvalidPredictionInput:
                raise
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                raise InvalidPredictionInput(f"Invalid appointment request {i}: {e!r}") from e
        try:
            start = parse_datetime(date_range["start"])
            end = parse_datetime(date_range["end"])
        except ValueError as e:
            raise InvalidPredictionInput(f"Invalid date_range: {e}") from e
        return cls(
            provider_id=data.get("provider_id"),
            start=start,
            end=end,
            appointment_requests=tuple(requests),
            constraints=SchedulingConstraints(
                working_hours=constraints.get("working_hours", {}),
                break_times=tuple(constraints.get("break_times", [])),
                blocked_times=tuple(constraints.get("blocked_times", [])),
                max_consecutive_appointments=constraints.get("max_consecutive_appointments", 0),
                buffer_time=constraints.get("buffer_time", 0),
            ),
            preferences=data.get("preferences", {}),
        )

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass(frozen=True)
class ScheduledAppointment:
    appointment_request_id: str
    patient_id: str
    scheduled_time: datetime
    duration: int
    confidence: float
    alternative_slots: tuple = field(default_factory=tuple)


@dataclass(frozen=True)
class SchedulingOptimization:
    optimized_schedule: tuple
    utilization_rate: float
    expected_no_shows: float
    revenue_estimate: float
    conflicts_resolved: int
    recommendations: tuple
    explanation: str

    @property
    def result(self) -> tuple:
        return self.optimized_schedule

    @property
    def confidence(self) -> float:
        return self.utilization_rate

    def to_dict(self) -> dict:
        data = to_jsonable(self)
        data["result"] = data["optimized_schedule"]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SchedulingOptimization":
        schedule = []
        for item in data.get("optimized_schedule", []):
            schedule.append(ScheduledAppointment(
                appointment_request_id=item["appointment_request_id"],
                patient_id=item["patient_id"],
                scheduled_time=parse_datetime(item["scheduled_time"]),
                duration=item["duration"],
                confidence=item["confidence"],
                alternative_slots=tuple(TimeSlot.from_dict(s) for s in item.get("alternative_slots", [])),
            ))
        return cls(
            optimized_schedule=tuple(schedule),
            utilization_rate=data["utilization_rate"],
            expected_no_shows=data["expected_no_shows"],
            revenue_estimate=data["revenue_estimate"],
            conflicts_resolved=data["conflicts_resolved"],
            recommendations=tuple(data.get("recommendations", [])),
            explanation=data.get("explanation", ""),
        )


def optimize_schedule(
    request: SchedulingOptimizationInput,
    economics: ScheduleEconomics = ScheduleEconomics(),
) -> SchedulingOptimization:
    """
    Greedy placeholder: each request takes its first preferred slot, or an
    hourly offset from the range start. Collisions and blocked/break times are
    not checked.
    """
    placements = []
    for i, req in enumerate(request.appointment_requests):
        if req.preferred_times:
            scheduled_time = req.preferred_times[0].start
        else:
            scheduled_time = request.start + timedelta(hours=i)
        placements.append(ScheduledAppointment(
            appointment_request_id=f"req_{i}",
            patient_id=req.patient_id,
            scheduled_time=scheduled_time,
            duration=req.duration,
            confidence=PLACEMENT_CONFIDENCE,
            alternative_slots=tuple(req.preferred_times[1:1 + MAX_ALTERNATIVE_SLOTS]),
        ))

    count = len(placements)
    utilization = round(min(economics.max_utilization, count / economics.daily_slot_capacity), 4)
    expected_no_shows = round(count * economics.no_show_rate, 4)
    revenue = round(count * economics.revenue_per_appointment, 2)
    conflicts = int(np.floor(len(request.appointment_requests) * economics.conflict_resolution_ratio))

    return SchedulingOptimization(
        optimized_schedule=tuple(placements),
        utilization_rate=utilization,
        expected_no_shows=expected_no_shows,
        revenue_estimate=revenue,
        conflicts_resolved=conflicts,
        recommendations=(
            f"Utilization rate: {percent(utilization)}%",
            f"Expected no-shows: {int(np.floor(expected_no_shows + 0.5))}",
            f"Estimated revenue: ${revenue:,.0f}",
        ),
        explanation=f"Optimized schedule achieves {percent(utilization)}% utilization with minimal conflicts.",
    )


class ScheduleOptimizer(ABC):
    model_version = "unversioned"

    @abstractmethod
    def optimize(self, request: SchedulingOptimizationInput) -> SchedulingOptimization:
        ...


class GreedyScheduleOptimizer(ScheduleOptimizer):
    model_version = "schedule-greedy-v1"

    def __init__(self, economics: ScheduleEconomics = ScheduleEconomics()):
        self.economics = economics

    def optimize(self, request: SchedulingOptimizationInput) -> SchedulingOptimization:
        return optimize_schedule(request, self.economics)

"""
ClinicFlow - Exception Handling Service
Routes intake processing failures to automatic recovery, specialized processing or manual review
"""

from __future__ import annotations
import logging
import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ai.models.base import to_jsonable
from app.services.services import AuditService
from app.utils.pagination import paginate_query, page_count

logger = logging.getLogger(__name__)

# Task statuses written back to intake_tasks
STATUS_PROCESSING = "processing"
STATUS_NEEDS_VALIDATION = "Needs Validation"
STATUS_NEEDS_SPECIALIST = "Needs Specialist Review"
STATUS_TECHNICAL_REVIEW = "Technical Review Required"

REVIEW_PRIORITIES = ("low", "medium", "high", "urgent")
REVIEW_STATUSES = ("pending", "in_review", "completed", "rejected")
REVIEW_TRANSITIONS = {
    "pending": {"in_review", "completed", "rejected"},
    "in_review": {"completed", "rejected"},
    "completed": set(),
    "rejected": set(),
}

COMPLEXITY_WEIGHTS = {
    "handwritten_text": 0.3,
    "poor_image_quality": 0.25,
    "multiple_languages": 0.2,
    "unusual_layout": 0.15,
    "faded_text": 0.2,
}
DEFAULT_COMPLEXITY_WEIGHT = 0.1

SIMULATED_FAILURE_RATE = 0.3

MAX_RECOVERABLE_FORMAT_ERRORS = 3
MAX_RECOVERABLE_MISSING_ERRORS = 2


class ReviewTaskNotFound(LookupError):
    pass


class InvalidReviewTransition(ValueError):
    pass


@dataclass(frozen=True)
class ComplexityIndicator:
    type: str
    severity: str = "medium"
    confidence: float = 0.0
    location: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ComplexityIndicator":
        return cls(
            type=data["type"],
            severity=data.get("severity", "medium"),
            confidence=data.get("confidence", 0.0),
            location=data.get("location"),
        )


@dataclass(frozen=True)
class ValidationIssue:
    type: str
    severity: str = "medium"
    field: Optional[str] = None
    message: str = ""


@dataclass(frozen=True)
class AIValidationResult:
    confidence: float
    errors: tuple = field(default_factory=tuple)
    warnings: tuple = field(default_factory=tuple)
    is_valid: bool = False
    validation_rules_count: int = 0
    ai_recommendations_count: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "AIValidationResult":
        return cls(
            confidence=float(data.get("confidence", 0.0)),
            errors=tuple(ValidationIssue(**e) for e in data.get("errors", [])),
            warnings=tuple(ValidationIssue(**w) for w in data.get("warnings", [])),
            is_valid=data.get("is_valid", False),
            validation_rules_count=len(data.get("validation_rules", [])),
            ai_recommendations_count=len(data.get("ai_recommendations", [])),
        )


@dataclass(frozen=True)
class ExceptionResolution:
    type: str
    strategy: str
    success: bool
    new_status: str
    actions: tuple
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass(frozen=True)
class _SpecializedStrategy:
    name: str
    indicator: str
    actions: tuple
    confidence: float


SPECIALIZED_STRATEGIES = (
    _SpecializedStrategy("handwriting_recognition", "handwritten_text", ("apply_handwriting_ocr", "manual_verification"), 0.7),
    _SpecializedStrategy("image_enhancement", "poor_image_quality", ("enhance_image", "reprocess_ocr"), 0.8),
    _SpecializedStrategy("multilingual_processing", "multiple_languages", ("detect_languages", "process_by_language"), 0.6),
)

# (name, pattern, recovery method); first match wins
ERROR_PATTERNS = (
    ("network_timeout", re.compile(r"timeout|network", re.IGNORECASE), "retry_with_backoff"),
    ("rate_limit", re.compile(r"rate limit|too many requests", re.IGNORECASE), "exponential_backoff"),
    ("temporary_service_unavailable", re.compile(r"service unavailable|502|503", re.IGNORECASE), "retry_after_delay"),
)


# ─────────────────────────────────────────
# FIELD NORMALIZATION
# ─────────────────────────────────────────

def normalize_phone(phone: str) -> str:
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    return phone


def normalize_date(value: str) -> str:
    """MM/DD/YYYY with zero-padded month and day; other shapes pass through."""
    match = re.search(r"(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})", value)
    if match:
        month, day, year = match.groups()
        return f"{month.zfill(2)}/{day.zfill(2)}/{year}"
    return value


def infer_email_from_name(name: str) -> Optional[str]:
    parts = name.lower().split()
    if len(parts) >= 2:
        return f"{parts[0]}.{parts[1]}@example.com"
    return None


def calculate_complexity_score(indicators) -> float:
    return round(sum(COMPLEXITY_WEIGHTS.get(i.type, DEFAULT_COMPLEXITY_WEIGHT) for i in indicators), 4)


def calculate_review_priority(validation: AIValidationResult) -> str:
    critical = sum(1 for e in validation.errors if e.severity == "high")
    medium = sum(1 for e in validation.errors if e.severity == "medium")
    confidence = validation.confidence

    if critical >= 3 or confidence < 0.5:
        return "urgent"
    if critical > 0 or confidence < 0.7:
        return "high"
    if medium >= 3 or confidence < 0.8:
        return "medium"
    return "low"


class ExceptionHandlingService:
    """
    Recovery router for the automated intake workflow.

    Simulated recovery outcomes draw from the injected `rng` so tests can pin them.
    OCR fallback strategies can be replaced per name through `ocr_strategies`;
    each takes (task_id, context) and returns a dict with `confidence`, or None.
    """

    def __init__(
        self,
        supabase_client,
        rng: Optional[random.Random] = None,
        ocr_strategies: Optional[dict] = None,
        audit=AuditService,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._db = supabase_client
        self._rng = rng or random.Random()
        self._audit = audit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.ocr_strategies = {
            "enhance_image_quality": self._enhance_image_quality,
            "alternative_ocr_service": self._alternative_ocr_service,
            "manual_text_extraction": self._manual_text_extraction,
        }
        self.ocr_strategies.update(ocr_strategies or {})

    # ─────────────────────────────────────
    # DISPATCH
    # ─────────────────────────────────────

    def handle_processing_exception(self, task_id: str, exception_type: str, context: dict) -> ExceptionResolution:
        logger.info(f"[ExceptionRouter] Task {task_id}: handling {exception_type}")
        try:
            resolution = self._dispatch(task_id, exception_type, context)
        except Exception as e:
            logger.error(f"[ExceptionRouter] Handling {exception_type} for task {task_id} failed: {e}", exc_info=True)
            resolution = self._fallback_resolution(task_id, exception_type, context)

        self._update_task(task_id, resolution)
        self._audit.log_system(
            "exception_routed",
            resource_type="intake_task",
            resource_id=task_id,
            event_data={
                "exception_type": exception_type,
                "resolution_type": resolution.type,
                "strategy": resolution.strategy,
                "new_status": resolution.new_status,
            },
        )
        return resolution

    def _dispatch(self, task_id: str, exception_type: str, context: dict) -> ExceptionResolution:
        if exception_type == "low_confidence_ocr":
            return self.handle_low_confidence_ocr(task_id, context["ocr_result"], context["threshold"])
        if exception_type == "validation_failure":
            return self.handle_validation_failure(
                task_id,
                AIValidationResult.from_dict(context["validation_result"]),
                context.get("extracted_fields", []),
            )
        if exception_type == "complex_document":
            return self.handle_complex_document(
                task_id,
                context.get("document_type", "unknown"),
                [ComplexityIndicator.from_dict(i) for i in context.get("complexity_indicators", [])],
            )
        if exception_type == "system_error":
            return self.handle_system_error(task_id, context["error"], context.get("processing_stage", "unknown"))

        # processing_timeout, unknown_error and anything unrecognised
        return self._manual_review_resolution(task_id, exception_type, context, "medium")

    # ─────────────────────────────────────
    # LOW CONFIDENCE OCR
    # ─────────────────────────────────────

    def _enhance_image_quality(self, task_id: str, context: dict) -> dict:
        logger.info(f"[ExceptionRouter] Enhancing image quality for task {task_id}")
        return {
            "confidence": min(0.95, round((context.get("confidence") or 0) + 0.15, 4)),
            "extracted_text": context.get("extracted_text"),
            "enhancement_method": "contrast_brightness_adjustment",
        }

    def _alternative_ocr_service(self, task_id: str, context: dict) -> dict:
        logger.info(f"[ExceptionRouter] Using alternative OCR service for task {task_id}")
        return {
            "confidence": min(0.92, round((context.get("confidence") or 0) + 0.12, 4)),
            "extracted_text": context.get("extracted_text"),
            "service_name": "backup_ocr_service",
        }

    def _manual_text_extraction(self, task_id: str, context: dict) -> None:
        self._create_review_task(task_id, "manual_text_extraction", "medium", {
            **context,
            "requires_manual_extraction": True,
            "extraction_type": "full_text",
        })
        return None

    def handle_low_confidence_ocr(self, task_id: str, ocr_result: dict, threshold: float) -> ExceptionResolution:
        context = {
            "confidence": ocr_result.get("confidence"),
            "threshold": threshold,
            "extracted_text": ocr_result.get("extracted_text"),
            "bounding_boxes": ocr_result.get("bounding_boxes", []),
            "metadata": {"ocr_service": "primary", "processing_time": ocr_result.get("processing_time")},
        }

        for name, strategy in self.ocr_strategies.items():
            try:
                improved = strategy(task_id, context)
            except Exception as e:
                logger.warning(f"[ExceptionRouter] OCR strategy {name} failed for task {task_id}: {e}")
                continue
            if improved and improved.get("confidence", 0) > threshold:
                return ExceptionResolution(
                    type="automatic_recovery",
                    strategy=name,
                    success=True,
                    new_status=STATUS_PROCESSING,
                    actions=("update_ocr_result", "continue_processing"),
                    metadata={
                        "original_confidence": ocr_result.get("confidence"),
                        "improved_confidence": improved["confidence"],
                        "strategy": name,
                    },
                )

        return self._manual_review_resolution(task_id, "low_confidence_ocr", context, "medium")

    # ─────────────────────────────────────
    # VALIDATION FAILURE
    # ─────────────────────────────────────

    def _recovery_methods(self, validation: AIValidationResult) -> list[str]:
        format_errors = [e for e in validation.errors if "format" in e.type or "invalid" in e.type]
        missing_errors = [e for e in validation.errors if "missing" in e.type or "empty" in e.type]

        methods = []
        if format_errors and len(format_errors) <= MAX_RECOVERABLE_FORMAT_ERRORS:
            methods.append("format_correction")
        if missing_errors and len(missing_errors) <= MAX_RECOVERABLE_MISSING_ERRORS:
            methods.append("field_inference")
        return methods

    @staticmethod
    def _apply_format_corrections(fields: list[dict]):
        for f in fields:
            kind = f.get("field_type")
            if f.get("field_name") in ("phone", "email"):
                kind = f["field_name"]
            value = f.get("field_value")
            if not isinstance(value, str):
                continue
            if kind == "phone":
                f["field_value"] = normalize_phone(value)
            elif kind == "date":
                f["field_value"] = normalize_date(value)
            elif kind == "email":
                f["field_value"] = value.strip().lower()

    @staticmethod
    def _apply_field_inference(fields: list[dict]):
        values = {f.get("field_name"): f.get("field_value") for f in fields}
        if not values.get("email") and values.get("patient_name"):
            inferred = infer_email_from_name(values["patient_name"])
            if inferred:
                fields.append({
                    "field_name": "email",
                    "field_value": inferred,
                    "confidence": 0.6,
                    "field_type": "email",
                    "inferred": True,
                })

    def handle_validation_failure(
        self,
        task_id: str,
        validation: AIValidationResult,
        extracted_fields: list[dict],
    ) -> ExceptionResolution:
        context = {
            "validation_errors": [to_jsonable(e) for e in validation.errors],
            "validation_warnings": [to_jsonable(w) for w in validation.warnings],
            "confidence": validation.confidence,
            "extracted_fields": extracted_fields,
            "metadata": {
                "validation_rules": validation.validation_rules_count,
                "ai_recommendations": validation.ai_recommendations_count,
            },
        }

        methods = self._recovery_methods(validation)
        if methods:
            corrected = [dict(f) for f in extracted_fields]
            applied = []
            for method in methods:
                try:
                    if method == "format_correction":
                        self._apply_format_corrections(corrected)
                    else:
                        self._apply_field_inference(corrected)
                    applied.append(method)
                except Exception as e:
                    logger.warning(f"[ExceptionRouter] Recovery method {method} failed for task {task_id}: {e}")

            if applied:
                return ExceptionResolution(
                    type="automatic_recovery",
                    strategy="field_correction",
                    success=True,
                    new_status=STATUS_PROCESSING,
                    actions=("update_extracted_fields", "revalidate"),
                    metadata={"corrected_fields": corrected, "recovery_methods": applied},
                )

        priority = calculate_review_priority(validation)
        return self._manual_review_resolution(task_id, "validation_failure", context, priority)

    # ─────────────────────────────────────
    # COMPLEX DOCUMENT
    # ─────────────────────────────────────

    def handle_complex_document(
        self,
        task_id: str,
        document_type: str,
        indicators: list[ComplexityIndicator],
    ) -> ExceptionResolution:
        context = {
            "document_type": document_type,
            "complexity_indicators": [to_jsonable(i) for i in indicators],
            "metadata": {
                "complexity_score": calculate_complexity_score(indicators),
                "indicator_count": len(indicators),
            },
        }

        present = {i.type for i in indicators}
        for strategy in SPECIALIZED_STRATEGIES:
            if strategy.indicator not in present:
                continue
            logger.info(f"[ExceptionRouter] Applying {strategy.name} for task {task_id}")
            if self._rng.random() > SIMULATED_FAILURE_RATE:
                return ExceptionResolution(
                    type="specialized_processing",
                    strategy=strategy.name,
                    success=True,
                    new_status=STATUS_PROCESSING,
                    actions=strategy.actions,
                    metadata={"specialized_method": strategy.name, "complexity_handled": True},
                )

        self._create_review_task(task_id, "complex_document", "high", {
            **context,
            "requires_specialist": True,
            "specialist_type": "document_processing_expert",
        })
        return ExceptionResolution(
            type="specialized_review",
            strategy="expert_intervention",
            success=True,
            new_status=STATUS_NEEDS_SPECIALIST,
            actions=("create_specialist_task", "notify_specialists"),
            metadata={"review_type": "complex_document", "requires_expert": True, "complexity_handled": False},
        )

    # ─────────────────────────────────────
    # SYSTEM ERROR
    # ─────────────────────────────────────

    @staticmethod
    def identify_error_pattern(message: str) -> Optional[tuple]:
        for name, pattern, method in ERROR_PATTERNS:
            if pattern.search(message):
                return name, method
        return None

    def handle_system_error(self, task_id: str, error, processing_stage: str) -> ExceptionResolution:
        if isinstance(error, BaseException):
            error_info = {"message": str(error), "name": type(error).__name__}
        else:
            error_info = {"message": error.get("message", ""), "name": error.get("name", "Error")}

        context = {
            "error": error_info,
            "processing_stage": processing_stage,
            "metadata": {"timestamp": self._clock().isoformat()},
        }

        matched = self.identify_error_pattern(error_info["message"])
        if matched:
            pattern_name, recovery_method = matched
            logger.info(f"[ExceptionRouter] Executing {recovery_method} for task {task_id}")
            if self._rng.random() > SIMULATED_FAILURE_RATE:
                return ExceptionResolution(
                    type="error_recovery",
                    strategy=recovery_method,
                    success=True,
                    new_status=STATUS_PROCESSING,
                    actions=("retry_processing", "log_recovery"),
                    metadata={"error_pattern": pattern_name, "recovery_method": recovery_method},
                )

        self._create_review_task(task_id, "technical_error", "urgent", {
            **context,
            "requires_technical_review": True,
            "error_details": error_info,
        })
        return ExceptionResolution(
            type="technical_review",
            strategy="system_intervention",
            success=True,
            new_status=STATUS_TECHNICAL_REVIEW,
            actions=("create_technical_task", "notify_technical_team"),
            metadata={"error_type": error_info["name"], "requires_technical_expert": True, "system_issue": True},
        )

    # ─────────────────────────────────────
    # REVIEW TASKS / TASK STATE
    # ─────────────────────────────────────

    def _create_review_task(self, task_id: str, review_type: str, priority: str, context: dict) -> dict:
        """Insert a manual_review_queue row. Errors propagate to the dispatcher."""
        result = self._db.table("manual_review_queue").insert({
            "intake_task_id": task_id,
            "review_type": review_type,
            "priority": priority,
            "metadata": {
                "exception_context": to_jsonable(context),
                "created_by_exception_handler": True,
                "requires_specialized_attention": priority == "urgent",
            },
            "status": "pending",
        }).execute()
        logger.info(f"[ExceptionRouter] Queued {review_type} review ({priority}) for task {task_id}")
        return result.data[0] if result.data else {}

    def _manual_review_resolution(self, task_id: str, review_type: str, context: dict, priority: str) -> ExceptionResolution:
        self._create_review_task(task_id, review_type, priority, context)
        return ExceptionResolution(
            type="manual_review",
            strategy="human_intervention",
            success=True,
            new_status=STATUS_NEEDS_VALIDATION,
            actions=("create_review_task", "notify_reviewers"),
            metadata={"review_type": review_type, "priority": priority, "requires_specialist": priority == "urgent"},
        )

    def _fallback_resolution(self, task_id: str, exception_type: str, context: dict) -> ExceptionResolution:
        try:
            self._create_review_task(task_id, "exception_fallback", "high", context)
        except Exception as e:
            logger.error(f"[ExceptionRouter] Fallback review task for {task_id} could not be created: {e}")
        return ExceptionResolution(
            type="fallback",
            strategy="manual_review_fallback",
            success=True,
            new_status=STATUS_NEEDS_VALIDATION,
            actions=("create_review_task",),
            metadata={"fallback": True, "original_exception": exception_type},
        )

    def _update_task(self, task_id: str, resolution: ExceptionResolution):
        try:
            self._db.table("intake_tasks").update({
                "status": resolution.new_status,
                "exception_handled": True,
                "exception_resolution": resolution.to_dict(),
                "updated_at": self._clock().isoformat(),
            }).eq("id", task_id).execute()
        except Exception as e:
            logger.error(f"[ExceptionRouter] Failed to update task {task_id}: {e}")

    # ─────────────────────────────────────
    # REVIEW QUEUE
    # ─────────────────────────────────────

    def list_review_queue(
        self,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict:
        query = self._db.table("manual_review_queue").select("*", count="exact")
        if status:
            query = query.eq("status", status)
        if priority:
            query = query.eq("priority", priority)
        query = paginate_query(query.order("created_at", desc=True), page, page_size)
        result = query.execute()

        total = result.count or 0
        return {
            "items": result.data or [],
            "total": total,
            "page": page,
            "page_size": page_size,
            "pages": page_count(total, page_size),
        }

    def update_review_status(
        self,
        review_id: str,
        status: str,
        reviewer_id: Optional[str] = None,
        notes: Optional[str] = None,
        corrected_data: Optional[dict] = None,
    ) -> dict:
        if status not in REVIEW_STATUSES:
            raise InvalidReviewTransition(f"Unknown review status: {status}")

        rows = self._db.table("manual_review_queue").select("id, status, intake_task_id").eq(
            "id", review_id
        ).limit(1).execute().data
        if not rows:
            raise ReviewTaskNotFound(review_id)

        current = rows[0]["status"]
        if status not in REVIEW_TRANSITIONS.get(current, set()):
            raise InvalidReviewTransition(f"Cannot move review from {current} to {status}")

        now = self._clock().isoformat()
        update = {"status": status, "updated_at": now}
        if reviewer_id:
            update["assigned_to"] = reviewer_id
        if notes is not None:
            update["reviewer_notes"] = notes
        if corrected_data is not None:
            update["corrected_data"] = corrected_data
        if status in ("completed", "rejected"):
            update["reviewed_at"] = now

        result = self._db.table("manual_review_queue").update(update).eq("id", review_id).execute()
        self._audit.log(
            "review_status_changed",
            actor_id=reviewer_id,
            resource_type="manual_review",
            resource_id=review_id,
            event_data={"from": current, "to": status},
        )
        return result.data[0] if result.data else {**rows[0], **update}

"""
ClinicFlow - OCR Pipeline
Synthesizes the intake-form OCR result and extracts structured fields from its text
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from ai.models.base import InvalidPredictionInput, to_jsonable

logger = logging.getLogger(__name__)

SYNTHETIC_CONFIDENCE = 0.91
SYNTHETIC_PROCESSING_MS = 1250


@dataclass(frozen=True)
class OCROptions:
    language: str = "en"
    detect_orientation: bool = False
    extract_tables: bool = False
    extract_signatures: bool = False
    confidence_threshold: float = 0.8


@dataclass(frozen=True)
class OCRProcessingInput:
    document_id: str
    document_type: str = "intake_form"
    options: OCROptions = field(default_factory=OCROptions)

    def __post_init__(self):
        if not self.document_id:
            raise InvalidPredictionInput("document_id is required")

    @classmethod
    def from_dict(cls, data: dict) -> "OCRProcessingInput":
        opts = data.get("processing_options") or {}
        return cls(
            document_id=data.get("document_id"),
            document_type=data.get("document_type", "intake_form"),
            options=OCROptions(
                language=opts.get("language", "en"),
                detect_orientation=opts.get("detect_orientation", False),
                extract_tables=opts.get("extract_tables", False),
                extract_signatures=opts.get("extract_signatures", False),
                confidence_threshold=opts.get("confidence_threshold", 0.8),
            ),
        )

    def to_dict(self) -> dict:
        return to_jsonable(self)


@dataclass(frozen=True)
class BoundingBox:
    x: int
    y: int
    width: int
    height: int
    confidence: float
    text: str


@dataclass(frozen=True)
class ExtractedField:
    field_name: str
    field_value: str
    confidence: float
    field_type: str
    bounding_box: Optional[BoundingBox] = None


@dataclass(frozen=True)
class OCRResult:
    extracted_text: str
    confidence: float
    bounding_boxes: tuple = field(default_factory=tuple)
    extracted_fields: tuple = field(default_factory=tuple)
    structured_data: dict = field(default_factory=dict)
    detected_language: Optional[str] = None
    page_count: int = 1
    processing_time: int = 0
    explanation: str = ""

    @property
    def result(self) -> str:
        return self.extracted_text

    def to_dict(self) -> dict:
        data = to_jsonable(self)
        data["result"] = self.extracted_text
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "OCRResult":
        fields_ = []
        for f in data.get("extracted_fields", []):
            box = f.get("bounding_box")
            fields_.append(ExtractedField(
                field_name=f["field_name"],
                field_value=f["field_value"],
                confidence=f["confidence"],
                field_type=f["field_type"],
                bounding_box=BoundingBox(**box) if box else None,
            ))
        return cls(
            extracted_text=data["extracted_text"],
            confidence=data["confidence"],
            bounding_boxes=tuple(BoundingBox(**b) for b in data.get("bounding_boxes", [])),
            extracted_fields=tuple(fields_),
            structured_data=data.get("structured_data", {}),
            detected_language=data.get("detected_language"),
            page_count=data.get("page_count", 1),
            processing_time=data.get("processing_time", 0),
            explanation=data.get("explanation", ""),
        )


def _intake_form_text(today: date) -> str:
    return "\n".join([
        "PATIENT INTAKE FORM",
        "",
        "Patient Name: John Doe",
        "Date of Birth: 01/15/1980",
        "Phone: (555) 123-4567",
        "Email: john.doe@email.com",
        "",
        "Chief Complaint: Routine checkup",
        "Medical History: Hypertension, Diabetes Type 2",
        "Current Medications: Metformin 500mg, Lisinopril 10mg",
        "Allergies: Penicillin",
        "",
        "Insurance: Blue Cross Blue Shield",
        "Policy Number: BC123456789",
        "Group Number: GRP001",
        "",
        "Patient Signature: [Signature Present]",
        f"Date: {today.month}/{today.day}/{today.year}",
    ])


class OCRPipeline:
    """
    Intake document OCR.
    No recognition engine is wired in: process() returns the synthesized
    intake-form result, then runs the regex field extraction over its text.
    """

    # Intake form field patterns
    FIELD_PATTERNS = {
        "patient_name": r"patient name[:\s]+([A-Z][a-z]+ [A-Z][a-z]+)",
        "date_of_birth": r"(?:date of birth|dob|d\.o\.b)[:\s]+(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})",
        "phone": r"phone[:\s]+(\(?\d{3}\)?[\s.\-]?\d{3}[\s.\-]?\d{4})",
        "email": r"e-?mail[:\s]+([\w.+\-]+@[\w\-]+\.[\w.\-]+)",
        "policy_number": r"policy\s*(?:number|no\.?|#)[:\s]+([A-Z0-9\-]+)",
        "group_number": r"group\s*(?:number|no\.?|#)[:\s]+([A-Z0-9\-]+)",
        "insurance_provider": r"insurance[:\s]+([A-Z][^\n]{2,60})",
        "allergies": r"allergies[:\s]+([^\n]+)",
    }

    def extract_structured_fields(self, text: str) -> dict:
        """Apply regex patterns to extract structured intake fields."""
        extracted = {}
        for field_name, pattern in self.FIELD_PATTERNS.items():
            matches = re.findall(pattern, text, re.IGNORECASE)
            if matches:
                extracted[field_name] = matches[0].strip() if len(matches) == 1 else matches

        medications = re.search(r"current medications[:\s]+([^\n]+)", text, re.IGNORECASE)
        if medications:
            extracted["medications"] = [m.strip() for m in medications.group(1).split(",") if m.strip()]

        extracted["signature_present"] = bool(re.search(r"\[signature present\]", text, re.IGNORECASE))
        return extracted

    def synthesize(self, request: OCRProcessingInput, today: date) -> OCRResult:
        text = _intake_form_text(today)
        boxes = (
            BoundingBox(x=50, y=100, width=200, height=25, confidence=0.95, text="Patient Name: John Doe"),
            BoundingBox(x=50, y=130, width=180, height=25, confidence=0.92, text="Date of Birth: 01/15/1980"),
            BoundingBox(x=50, y=160, width=160, height=25, confidence=0.88, text="Phone: (555) 123-4567"),
        )
        fields_ = (
            ExtractedField("patient_name", "John Doe", 0.95, "text", boxes[0]),
            ExtractedField("date_of_birth", "01/15/1980", 0.92, "date", boxes[1]),
            ExtractedField("phone", "(555) 123-4567", 0.88, "text", boxes[2]),
        )
        return OCRResult(
            extracted_text=text,
            confidence=SYNTHETIC_CONFIDENCE,
            bounding_boxes=boxes,
            extracted_fields=fields_,
            structured_data=self.extract_structured_fields(text),
            detected_language="en",
            page_count=1,
            processing_time=SYNTHETIC_PROCESSING_MS,
            explanation="Document processed successfully with high confidence",
        )

    def process(self, request: OCRProcessingInput, today: Optional[date] = None) -> OCRResult:
        """Main entry point."""
        today = today or date.today()
        result = self.synthesize(request, today)
        logger.info(
            f"[OCR] Document {request.document_id} ({request.document_type}) "
            f"processed with confidence {result.confidence}"
        )
        return result


def synthesize_ocr_result(request: OCRProcessingInput, today: Optional[date] = None) -> OCRResult:
    return get_ocr_pipeline().process(request, today)


# Singleton
_ocr_instance: Optional[OCRPipeline] = None


def get_ocr_pipeline() -> OCRPipeline:
    global _ocr_instance
    if _ocr_instance is None:
        _ocr_instance = OCRPipeline()
    return _ocr_instance

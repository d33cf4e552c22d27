from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


UNKNOWN_FIELD_LABEL = "Unknown Field"


class Platform(str, Enum):
    LINKEDIN = "linkedin"
    INDEED = "indeed"
    WORKDAY = "workday"
    CUSTOM = "custom"


class FieldType(str, Enum):
    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"
    TEXTAREA = "textarea"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    FILE = "file"
    DATE = "date"
    NUMBER = "number"
    URL = "url"


class AutofillFeature(str, Enum):
    BASIC_INFO = "basic_info"
    WORK_EXPERIENCE = "work_experience"
    EDUCATION = "education"
    SKILLS = "skills"
    FILE_UPLOAD = "file_upload"
    AI_CONTENT = "ai_content"
    DEFAULT_ANSWERS = "default_answers"


class ChangeType(str, Enum):
    FORM_ADDED = "form_added"
    FORM_REMOVED = "form_removed"
    FIELD_ADDED = "field_added"
    FIELD_REMOVED = "field_removed"
    FIELD_CHANGED = "field_changed"
    VALIDATION_CHANGED = "validation_changed"


class ErrorCode(str, Enum):
    FORM_ANALYSIS_ERROR = "FORM_ANALYSIS_ERROR"
    DETECTION_FAILED = "DETECTION_FAILED"
    DETECTION_TIMEOUT = "DETECTION_TIMEOUT"
    FALLBACK_ERROR = "FALLBACK_ERROR"
    PLATFORM_DETECTION_ERROR = "PLATFORM_DETECTION_ERROR"
    DETECTOR_NOT_FOUND = "DETECTOR_NOT_FOUND"


RuleKind = Literal["required", "email", "phone", "url", "min_length", "max_length", "pattern"]
JobType = Literal["full_time", "part_time", "contract", "internship"]


class ValidationRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: RuleKind
    param: Optional[Any] = None
    message: str


class FormField(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: FieldType
    label: str
    selector: str
    required: bool = False
    placeholder: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    mapped_profile_field: Optional[str] = None
    validation_rules: List[ValidationRule] = Field(default_factory=list)


class JobContext(BaseModel):
    title: str
    company: str
    description: str = ""
    requirements: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    job_type: Optional[JobType] = None


class DetectedForm(BaseModel):
    model_config = ConfigDict(frozen=True)

    platform: Platform
    form_id: str
    url: str
    fields: List[FormField]
    job_context: Optional[JobContext] = None
    confidence: float = Field(ge=0.0, le=1.0)
    supported_features: List[AutofillFeature] = Field(default_factory=list)
    detected_at: datetime = Field(default_factory=datetime.now)
    is_multi_step: bool = False
    current_step: Optional[int] = None
    total_steps: Optional[int] = None

    @field_validator("fields")
    @classmethod
    def _non_empty(cls, v: List[FormField]) -> List[FormField]:
        if not v:
            raise ValueError("a detected form needs at least one field")
        return v


class DetectionError(BaseModel):
    code: ErrorCode
    message: str
    field: Optional[str] = None
    selector: Optional[str] = None


class FormDetectionResult(BaseModel):
    success: bool
    forms: List[DetectedForm] = Field(default_factory=list)
    errors: List[DetectionError] = Field(default_factory=list)
    platform_specific_data: Dict[str, Any] = Field(default_factory=dict)


class ConfidenceFactors(BaseModel):
    platform_match: float = 0.0
    field_count: float = 0.0
    required_fields: float = 0.0
    profile_mapping: float = 0.0
    job_keywords: float = 0.0
    form_structure: float = 0.0
    field_types: float = 0.0
    label_quality: float = 0.0


class ConfidenceBreakdown(BaseModel):
    factors: ConfidenceFactors
    weighted_scores: Dict[str, float]
    total_score: float


class FormValidationState(BaseModel):
    """Derived validation snapshot; replaced wholesale on every recompute."""

    model_config = ConfigDict(frozen=True)

    form_id: str
    is_valid: bool
    errors: Dict[str, List[str]] = Field(default_factory=dict)
    warnings: Dict[str, List[str]] = Field(default_factory=dict)
    required_fields: List[str] = Field(default_factory=list)
    completed_fields: List[str] = Field(default_factory=list)
    last_validated: datetime = Field(default_factory=datetime.now)

    @classmethod
    def derive(
        cls,
        form_id: str,
        *,
        errors: Optional[Dict[str, List[str]]] = None,
        warnings: Optional[Dict[str, List[str]]] = None,
        required_fields: Optional[List[str]] = None,
        completed_fields: Optional[List[str]] = None,
    ) -> "FormValidationState":
        errors = {k: list(v) for k, v in (errors or {}).items() if v}
        warnings = {k: list(v) for k, v in (warnings or {}).items() if v}
        required = list(required_fields or [])
        completed = list(completed_fields or [])
        done = set(completed)
        is_valid = not errors and all(fid in done for fid in required)
        return cls(
            form_id=form_id,
            is_valid=is_valid,
            errors=errors,
            warnings=warnings,
            required_fields=required,
            completed_fields=completed,
        )

    def differs_from(self, other: "FormValidationState") -> bool:
        return (
            self.is_valid != other.is_valid
            or self.errors != other.errors
            or self.warnings != other.warnings
            or self.completed_fields != other.completed_fields
        )


class FormChangeEvent(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: ChangeType
    form_id: str
    field_id: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class MonitorStats(BaseModel):
    is_monitoring: bool
    forms_count: int
    total_fields: int
    valid_forms: int
    multi_step_forms: int

from __future__ import annotations
from pathlib import Path
from typing import List, Optional, Tuple
import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Platform


class ScoringWeights(BaseModel):
    """Relative weight of each confidence factor; expected to sum to ~1.0."""

    model_config = ConfigDict(frozen=True)

    platform_match: float = 0.25
    field_count: float = 0.15
    required_fields: float = 0.10
    profile_mapping: float = 0.20
    job_keywords: float = 0.10
    form_structure: float = 0.10
    field_types: float = 0.05
    label_quality: float = 0.05

    def total(self) -> float:
        return sum(self.model_dump().values())


class DetectionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_confidence_threshold: float = Field(0.6, ge=0.0, le=1.0)
    max_forms_per_page: int = Field(5, ge=1)
    enable_job_context_extraction: bool = True
    field_detection_timeout: float = 5.0
    min_fields_per_form: int = Field(3, ge=1)


class PlatformConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enable_all_platforms: bool = True
    platform_priority: Tuple[Platform, ...] = (
        Platform.LINKEDIN,
        Platform.INDEED,
        Platform.WORKDAY,
        Platform.CUSTOM,
    )
    fallback_to_custom: bool = True
    max_detection_time: float = 10.0

    def is_enabled(self, platform: Platform) -> bool:
        return self.enable_all_platforms or platform in self.platform_priority


class MonitorConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_debounce: float = 0.3
    rescan_debounce: float = 0.5
    observed_attributes: Tuple[str, ...] = (
        "disabled",
        "required",
        "aria-required",
        "aria-invalid",
        "aria-describedby",
        "class",
        "style",
        "hidden",
    )


class Settings(BaseModel):
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    platforms: PlatformConfig = Field(default_factory=PlatformConfig)
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    trace_path: Optional[Path] = None
    trace_level: str = "INFO"

    @field_validator("trace_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()


def repo_root() -> Path:
    # Walk up from this file until we see a pyproject.toml or .git
    p = Path(__file__).resolve()
    for ancestor in [p, *p.parents]:
        if (ancestor / "pyproject.toml").exists() or (ancestor / ".git").exists():
            return ancestor
    return Path.cwd()


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_priority(value: str) -> List[Platform]:
    return [Platform(p.strip().lower()) for p in value.split(",") if p.strip()]


def load_settings(env_file: Optional[Path] = None) -> Settings:
    # Prefer a .env at the repo root
    env_path = env_file or (repo_root() / ".env")
    if env_path.exists():
        load_dotenv(env_path)

    detection: dict = {}
    platforms: dict = {}
    monitor: dict = {}
    if os.getenv("JOBFORMS_MIN_CONFIDENCE"):
        detection["min_confidence_threshold"] = float(os.environ["JOBFORMS_MIN_CONFIDENCE"])
    if os.getenv("JOBFORMS_MAX_FORMS"):
        detection["max_forms_per_page"] = int(os.environ["JOBFORMS_MAX_FORMS"])
    if os.getenv("JOBFORMS_JOB_CONTEXT"):
        detection["enable_job_context_extraction"] = _env_bool(os.environ["JOBFORMS_JOB_CONTEXT"])
    if os.getenv("JOBFORMS_FALLBACK"):
        platforms["fallback_to_custom"] = _env_bool(os.environ["JOBFORMS_FALLBACK"])
    if os.getenv("JOBFORMS_MAX_DETECTION_TIME"):
        platforms["max_detection_time"] = float(os.environ["JOBFORMS_MAX_DETECTION_TIME"])
    if os.getenv("JOBFORMS_PLATFORM_PRIORITY"):
        platforms["platform_priority"] = tuple(_parse_priority(os.environ["JOBFORMS_PLATFORM_PRIORITY"]))
        platforms["enable_all_platforms"] = False
    if os.getenv("JOBFORMS_FIELD_DEBOUNCE"):
        monitor["field_debounce"] = float(os.environ["JOBFORMS_FIELD_DEBOUNCE"])

    trace_path = os.getenv("JOBFORMS_TRACE_PATH")
    return Settings(
        detection=DetectionConfig(**detection),
        platforms=PlatformConfig(**platforms),
        monitor=MonitorConfig(**monitor),
        trace_path=Path(trace_path) if trace_path else None,
        trace_level=os.getenv("JOBFORMS_TRACE_LEVEL", "INFO"),
    )

from __future__ import annotations

# Public exports for the forms package
from .classifier import ExtractionHooks, FieldClassifier, supported_features
from .engine import FormDetectionEngine, identify_platform
from .job_context import extract_job_context
from .profile_map import DEFAULT_PROFILE_MAPPINGS, ProfileMapping, map_profile_field
from .scorer import DEFAULT_TABLES, ConfidenceScorer, PageContext, ScoringTables
from .strategies import create_strategy

__all__ = [
    "ConfidenceScorer",
    "DEFAULT_PROFILE_MAPPINGS",
    "DEFAULT_TABLES",
    "ExtractionHooks",
    "FieldClassifier",
    "FormDetectionEngine",
    "PageContext",
    "ProfileMapping",
    "ScoringTables",
    "create_strategy",
    "extract_job_context",
    "identify_platform",
    "map_profile_field",
    "supported_features",
]

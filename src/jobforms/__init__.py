from __future__ import annotations

# Public exports for the jobforms package
from .config import DetectionConfig, MonitorConfig, PlatformConfig, ScoringWeights, Settings, load_settings
from .forms import FormDetectionEngine
from .models import DetectedForm, FormDetectionResult, FormField, FormValidationState, Platform
from .monitor import FormMonitor, SyntheticFeed
from .tree import PageTree, parse_html

__version__ = "0.1.0"

__all__ = [
    "DetectedForm",
    "DetectionConfig",
    "FormDetectionEngine",
    "FormDetectionResult",
    "FormField",
    "FormMonitor",
    "FormValidationState",
    "MonitorConfig",
    "PageTree",
    "Platform",
    "PlatformConfig",
    "ScoringWeights",
    "Settings",
    "SyntheticFeed",
    "load_settings",
    "parse_html",
]

"""
Form detection orchestration.

``FormDetectionEngine`` picks the page's platform, runs that strategy, falls
back to the remaining strategies in priority order when nothing was found,
then applies the confidence threshold and the per-page cap. Errors are
returned in the result, never raised to the caller.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import time

from ..config import DetectionConfig, PlatformConfig, ScoringWeights
from ..domains import domain, registered_name
from ..models import DetectedForm, DetectionError, ErrorCode, FormDetectionResult, Platform
from ..tracing import action, event
from ..tree import PageTree
from .scorer import DEFAULT_TABLES, ConfidenceScorer, ScoringTables
from .strategies import PlatformStrategy, create_strategy


logger = logging.getLogger(__name__)

WORKDAY_SIGNATURE = '[data-automation-id], [class*="workday"], [id*="workday"]'


def identify_platform(tree: PageTree) -> Platform:
    host = tree.host
    if host and domain(host) == "linkedin.com":
        return Platform.LINKEDIN
    if host and registered_name(host) == "indeed":
        return Platform.INDEED
    url = tree.url.lower()
    if "workday" in url or "myworkdaysite" in url or tree.select_one(WORKDAY_SIGNATURE) is not None:
        return Platform.WORKDAY
    return Platform.CUSTOM


class FormDetectionEngine:
    def __init__(
        self,
        detection_config: Optional[DetectionConfig] = None,
        platform_config: Optional[PlatformConfig] = None,
        weights: Optional[ScoringWeights] = None,
        *,
        tables: ScoringTables = DEFAULT_TABLES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._detection = detection_config or DetectionConfig()
        self._platforms = platform_config or PlatformConfig()
        self._weights = weights or ScoringWeights()
        self._tables = tables
        self._clock = clock
        self._build()

    def _build(self) -> None:
        self.scorer = ConfidenceScorer(self._weights, self._tables)
        self.strategies: Dict[Platform, PlatformStrategy] = {
            p: create_strategy(p, self.scorer, self._detection, clock=self._clock)
            for p in Platform
            if self._platforms.is_enabled(p)
        }

    # -- configuration -------------------------------------------------------

    @property
    def detection_config(self) -> DetectionConfig:
        return self._detection

    @property
    def platform_config(self) -> PlatformConfig:
        return self._platforms

    @property
    def weights(self) -> ScoringWeights:
        return self._weights

    def update_config(
        self,
        *,
        detection: Optional[Dict[str, Any]] = None,
        platforms: Optional[Dict[str, Any]] = None,
        weights: Optional[ScoringWeights] = None,
    ) -> None:
        """Replace parts of the configuration; strategies are rebuilt."""
        if detection:
            self._detection = self._detection.model_copy(update=detection)
        if platforms:
            self._platforms = self._platforms.model_copy(update=platforms)
        if weights is not None:
            self._weights = weights
        self._build()
        event("DETECT", "INFO", "config_updated", detection=self._detection.model_dump(), platforms=self._platforms.model_dump(mode="json"))

    # -- detection -----------------------------------------------------------

    def identify_platform(self, tree: PageTree) -> Platform:
        return identify_platform(tree)

    def _elapsed(self, start: float) -> float:
        return self._clock() - start

    def _check_budget(self, start: float, errors: List[DetectionError]) -> bool:
        """Record a single DETECTION_TIMEOUT once the scan runs past its budget."""
        if any(e.code == ErrorCode.DETECTION_TIMEOUT for e in errors):
            return True
        elapsed = self._elapsed(start)
        if elapsed <= self._platforms.max_detection_time:
            return False
        errors.append(
            DetectionError(
                code=ErrorCode.DETECTION_TIMEOUT,
                message=f"Detection timeout exceeded: {self._platforms.max_detection_time}s",
            )
        )
        event("DETECT", "INFO", "detection_timeout", elapsed=elapsed)
        return True

    def _filter(self, forms: List[DetectedForm]) -> List[DetectedForm]:
        kept = [f for f in forms if f.confidence >= self._detection.min_confidence_threshold]
        dropped = len(forms) - len(kept)
        if dropped:
            event("DETECT", "DEBUG", "below_threshold", dropped=dropped, threshold=self._detection.min_confidence_threshold)
        return kept[: self._detection.max_forms_per_page]

    def _fallback(self, original: Platform, tree: PageTree, start: float) -> Tuple[List[DetectedForm], List[DetectionError], Dict[str, Any]]:
        forms: List[DetectedForm] = []
        errors: List[DetectionError] = []
        per_platform: Dict[str, Any] = {}
        for platform in self._platforms.platform_priority:
            if platform == original:
                continue
            if self._check_budget(start, errors):
                break
            strategy = self.strategies.get(platform)
            if strategy is None:
                continue
            try:
                result = strategy.detect(tree)
            except Exception as e:
                logger.warning("fallback detection failed for %s: %s", platform.value, e)
                errors.append(
                    DetectionError(
                        code=ErrorCode.FALLBACK_ERROR,
                        message=f"Fallback detection failed for {platform.value}: {e}",
                    )
                )
                continue
            per_platform[platform.value] = {"forms": len(result.forms), "errors": len(result.errors)}
            errors.extend(result.errors)
            for form in result.forms:
                forms.append(form.model_copy(update={"form_id": f"{platform.value}_fallback_{form.form_id}"}))
        return forms, errors, per_platform

    def detect(self, tree: PageTree) -> FormDetectionResult:
        start = self._clock()
        try:
            platform = self.identify_platform(tree)
        except Exception as e:
            logger.warning("platform identification failed: %s", e)
            return FormDetectionResult(
                success=False,
                errors=[DetectionError(code=ErrorCode.DETECTION_FAILED, message=f"Form detection failed: {e}")],
                platform_specific_data={"detection_method": "error", "error": str(e)},
            )

        with action("detect_forms", category="DETECT", url=tree.url, platform=platform.value):
            forms: List[DetectedForm] = []
            errors: List[DetectionError] = []
            data: Dict[str, Any] = {}
            method = "platform_specific"

            strategy = self.strategies.get(platform)
            if strategy is None:
                errors.append(
                    DetectionError(
                        code=ErrorCode.DETECTOR_NOT_FOUND,
                        message=f"No detector available for platform: {platform.value}",
                    )
                )
            else:
                try:
                    result = strategy.detect(tree)
                    forms, data = result.forms, dict(result.platform_data)
                    errors.extend(result.errors)
                except Exception as e:
                    logger.warning("%s detection failed: %s", platform.value, e)
                    errors.append(
                        DetectionError(
                            code=ErrorCode.PLATFORM_DETECTION_ERROR,
                            message=f"Platform detection failed: {e}",
                        )
                    )

            timed_out = self._check_budget(start, errors)
            fallback_attempted = False
            if not forms and self._platforms.fallback_to_custom and not timed_out:
                fallback_attempted = True
                fallback_forms, fallback_errors, fallback_results = self._fallback(platform, tree, start)
                errors.extend(fallback_errors)
                if fallback_forms:
                    forms = fallback_forms
                    method = "fallback"
                    data["fallback_results"] = fallback_results
                self._check_budget(start, errors)

            kept = self._filter(forms)
            elapsed = self._elapsed(start)
            data.update(
                detected_platform=platform.value,
                detection_method=method,
                fallback_attempted=fallback_attempted,
                detection_time=elapsed,
            )
            event("DETECT", "INFO", "detection_complete", platform=platform.value, method=method, forms=len(kept), errors=len(errors), elapsed=round(elapsed, 4))
            return FormDetectionResult(success=True, forms=kept, errors=errors, platform_specific_data=data)

    def detect_on_all_platforms(self, tree: PageTree) -> Dict[Platform, FormDetectionResult]:
        """Run every priority strategy independently; for comparison and debugging."""
        results: Dict[Platform, FormDetectionResult] = {}
        for platform in self._platforms.platform_priority:
            strategy = self.strategies.get(platform)
            if strategy is None:
                results[platform] = FormDetectionResult(
                    success=False,
                    errors=[DetectionError(code=ErrorCode.DETECTOR_NOT_FOUND, message=f"No detector available for platform: {platform.value}")],
                )
                continue
            try:
                r = strategy.detect(tree)
            except Exception as e:
                logger.warning("%s detection failed: %s", platform.value, e)
                results[platform] = FormDetectionResult(
                    success=False,
                    errors=[DetectionError(code=ErrorCode.PLATFORM_DETECTION_ERROR, message=f"Detection failed for {platform.value}: {e}")],
                )
                continue
            results[platform] = FormDetectionResult(
                success=True, forms=self._filter(r.forms), errors=r.errors, platform_specific_data=r.platform_data
            )
        return results

    def detection_stats(self, tree: PageTree) -> Dict[str, Any]:
        start = self._clock()
        detected = self.identify_platform(tree)
        results = self.detect_on_all_platforms(tree)
        best: Optional[Platform] = None
        most = 0
        for platform, result in results.items():
            if len(result.forms) > most:
                most = len(result.forms)
                best = platform
        return {
            "detected_platform": detected.value,
            "platform_results": {p.value: {"forms": len(r.forms), "errors": len(r.errors)} for p, r in results.items()},
            "total_forms": sum(len(r.forms) for r in results.values()),
            "total_errors": sum(len(r.errors) for r in results.values()),
            "best_platform": best.value if best else None,
            "detection_time": self._elapsed(start),
        }

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Tuple
import time

from ...config import DetectionConfig
from ...models import Platform
from ...tracing import event
from ...tree import Node, PageTree
from ..classifier import FieldClassifier
from ..job_context import JobContextSelectors
from ..scorer import ConfidenceScorer
from .common import ContainerAnalyzer, StrategyResult, containers_with_fields, make_form_id, step_info, unique_containers


@dataclass(frozen=True)
class CustomFormPatterns:
    """Keyword and selector tables for pages of no known platform."""

    job_keywords: Tuple[str, ...] = (
        "job", "career", "position", "role", "employment", "hiring",
        "recruit", "application", "apply", "candidate", "opportunity", "opening",
    )
    application_keywords: Tuple[str, ...] = (
        "apply", "application", "submit", "candidate", "applicant",
        "resume", "cv", "cover letter", "personal information",
    )
    form_selectors: Tuple[str, ...] = (
        "form",
        'div[class*="application"], div[class*="apply"], div[class*="job-form"]',
        'div[id*="application"], div[id*="apply"]',
        'section[class*="application"], section[class*="apply"], section[class*="form"]',
        ".application-form, .job-application, .career-form, .apply-form",
    )
    bare_containers: str = "div, section, main, article"
    apply_trigger: str = 'a[class*="apply"], button[class*="apply"], a[href*="apply"], [id*="apply-button"]'


CUSTOM_FORM_PATTERNS = CustomFormPatterns()

JOB_SELECTORS = JobContextSelectors(company=(".company",))


class CustomStrategy:
    """Fallback detection for career pages of no known platform."""

    platform = Platform.CUSTOM

    def __init__(
        self,
        scorer: ConfidenceScorer,
        config: DetectionConfig,
        patterns: CustomFormPatterns = CUSTOM_FORM_PATTERNS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.patterns = patterns
        self.analyzer = ContainerAnalyzer(
            self.platform, scorer, config, selectors=JOB_SELECTORS, accept_title=self._acceptable_title, clock=clock
        )

    def _acceptable_title(self, value: str) -> bool:
        lowered = value.lower()
        return 5 <= len(value) <= 100 and any(k in lowered for k in self.patterns.job_keywords)

    def _haystack(self, tree: PageTree) -> str:
        parts = [tree.url, tree.title, tree.body_text(), tree.meta("description") or ""]
        return " ".join(parts).lower()

    def keyword_matches(self, tree: PageTree) -> Tuple[List[str], List[str]]:
        hay = self._haystack(tree)
        jobs = [k for k in self.patterns.job_keywords if k in hay]
        apps = [k for k in self.patterns.application_keywords if k in hay]
        return jobs, apps

    def is_applicable(self, tree: PageTree) -> bool:
        jobs, apps = self.keyword_matches(tree)
        return len(jobs) >= 2 or (len(jobs) >= 1 and len(apps) >= 1)

    def page_confidence(self, tree: PageTree) -> float:
        jobs, apps = self.keyword_matches(tree)
        score = min(len(jobs) / len(self.patterns.job_keywords), 0.5)
        score += min(len(apps) / len(self.patterns.application_keywords), 0.3)
        url = tree.url.lower()
        if "career" in url or "job" in url or "apply" in url:
            score += 0.2
        return min(score, 1.0)

    def detected_patterns(self, tree: PageTree) -> List[str]:
        jobs, apps = self.keyword_matches(tree)
        return [f"job_keyword:{k}" for k in jobs] + [f"application_keyword:{k}" for k in apps]

    def _containers(self, tree: PageTree) -> List[Tuple[Node, str]]:
        candidates: List[Node] = []
        for css in self.patterns.form_selectors:
            candidates.extend(tree.select(css))
        candidates = containers_with_fields(candidates, self.config.min_fields_per_form)
        if not candidates:
            candidates = containers_with_fields(tree.select(self.patterns.bare_containers), self.config.min_fields_per_form)
        return [(c, make_form_id("custom_form", c, i)) for i, c in enumerate(unique_containers(candidates))]

    def detect(self, tree: PageTree) -> StrategyResult:
        if not self.is_applicable(tree):
            event("DETECT", "DEBUG", "custom_page_rejected", url=tree.url)
            return StrategyResult()
        classifier = FieldClassifier(tree)
        containers = self._containers(tree)
        result = self.analyzer.analyze(tree, containers, classifier, steps=step_info)
        result.platform_data = {
            "page_confidence": self.page_confidence(tree),
            "detected_patterns": self.detected_patterns(tree),
            "has_apply_trigger": tree.select_one(self.patterns.apply_trigger) is not None,
        }
        event("DETECT", "DEBUG", "custom_scan", containers=len(containers), forms=len(result.forms))
        return result

"""
Confidence scoring for candidate application forms.

Eight independent factors, each in [0, 1], combined by ``ScoringWeights``.
The scorer is a pure function of (container, fields, platform, page context,
weights, keyword tables): no clock, no randomness.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple
import logging

from ..config import ScoringWeights
from ..domains import domain, registered_name
from ..models import (
    UNKNOWN_FIELD_LABEL,
    ConfidenceBreakdown,
    ConfidenceFactors,
    FormField,
    Platform,
)
from ..tracing import event
from ..tree import Node, PageTree


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringTables:
    job_keywords: Tuple[str, ...] = (
        "apply", "application", "job", "career", "position", "role",
        "resume", "cv", "cover letter", "experience", "qualification",
        "employment", "hiring", "recruit", "candidate", "applicant",
    )
    strong_phrases: Tuple[str, ...] = (
        "job application", "apply now", "submit application", "career opportunity",
        "position details", "job posting", "employment application",
    )
    custom_page_tokens: Tuple[str, ...] = ("career", "job", "apply", "position", "hiring")
    workday_tokens: Tuple[str, ...] = ("wd-", "workday", "talent", "careers")


DEFAULT_TABLES = ScoringTables()


@dataclass
class PageContext:
    url: str
    host: str
    title: str
    body_text: str
    body_classes: List[str] = field(default_factory=list)
    tree: PageTree | None = None

    @classmethod
    def from_tree(cls, tree: PageTree) -> "PageContext":
        return cls(
            url=tree.url.lower(),
            host=tree.host,
            title=tree.title.lower(),
            body_text=tree.body_text().lower(),
            body_classes=tree.body_classes(),
            tree=tree,
        )


def _band(value: float, steps: Sequence[Tuple[float, float]], floor: float) -> float:
    for threshold, score in steps:
        if value >= threshold:
            return score
    return floor


class ConfidenceScorer:
    def __init__(self, weights: ScoringWeights | None = None, tables: ScoringTables = DEFAULT_TABLES):
        self.weights = weights or ScoringWeights()
        self.tables = tables
        total = self.weights.total()
        if abs(total - 1.0) > 0.01:
            logger.warning("scoring weights sum to %.3f, expected 1.0", total)
            event("SCORE", "INFO", "weights_unbalanced", total=total)

    # -- factors -------------------------------------------------------------

    def platform_match(self, platform: Platform, page: PageContext) -> float:
        url = page.url
        host_domain = domain(page.host) if page.host else ""
        if platform == Platform.LINKEDIN:
            if host_domain == "linkedin.com":
                return 1.0 if "jobs" in url else 0.8
            return 0.0
        if platform == Platform.INDEED:
            if page.host and registered_name(page.host) == "indeed":
                return 1.0 if ("apply" in url or "job" in url) else 0.8
            return 0.0
        if platform == Platform.WORKDAY:
            if "workday" in url:
                return 1.0
            if page.tree is not None and page.tree.select_one('[class*="workday"], [id*="workday"]') is not None:
                return 1.0
            body_classes = " ".join(page.body_classes).lower()
            if any(t in url or t in body_classes for t in self.tables.workday_tokens):
                return 0.7
            return 0.0
        if any(t in url or t in page.title for t in self.tables.custom_page_tokens):
            return 0.6
        return 0.3

    @staticmethod
    def field_count(fields: Sequence[FormField]) -> float:
        n = len(fields)
        if n < 3:
            return 0.0
        if n < 5:
            return 0.3
        if n < 10:
            return 0.6
        if n < 20:
            return 0.9
        return 1.0

    @staticmethod
    def required_ratio(fields: Sequence[FormField]) -> float:
        if not fields:
            return 0.0
        ratio = sum(1 for f in fields if f.required) / len(fields)
        # applications usually mark 30-70% of their fields as required
        if 0.3 <= ratio <= 0.7:
            return 1.0
        if 0.2 <= ratio <= 0.8:
            return 0.8
        if 0.1 <= ratio <= 0.9:
            return 0.6
        return 0.3

    @staticmethod
    def profile_mapping(fields: Sequence[FormField]) -> float:
        if not fields:
            return 0.0
        ratio = sum(1 for f in fields if f.mapped_profile_field) / len(fields)
        return _band(ratio, [(0.7, 1.0), (0.5, 0.8), (0.3, 0.6), (0.1, 0.4)], 0.2)

    def job_keywords(self, container: Node, page: PageContext) -> float:
        combined = f"{container.text().lower()} {page.body_text}"
        score = 0.0
        matched = 0
        for phrase in self.tables.strong_phrases:
            if phrase in combined:
                score += 0.3
                matched += 1
        for kw in self.tables.job_keywords:
            if kw in combined:
                score += 0.1
                matched += 1
        diversity = min(matched / len(self.tables.job_keywords), 0.2)
        return min(min(score, 1.0) + diversity, 1.0)

    @staticmethod
    def form_structure(container: Node) -> float:
        score = 0.5
        if container.tag == "form":
            score += 0.2
        if container.select_one("fieldset, section, .form-section") is not None:
            score += 0.1
        inputs = container.select("input, textarea, select")
        if inputs:
            ratio = len(container.select("label")) / len(inputs)
            if ratio >= 0.8:
                score += 0.1
            elif ratio >= 0.5:
                score += 0.05
        if container.select_one('button[type="submit"], input[type="submit"], button:not([type])') is not None:
            score += 0.1
        if container.select_one("[required], [pattern], [minlength], [maxlength]") is not None:
            score += 0.1
        return min(score, 1.0)

    @staticmethod
    def field_types(fields: Sequence[FormField]) -> float:
        distinct = len({f.type for f in fields})
        return {5: 1.0, 4: 0.8, 3: 0.6, 2: 0.4}.get(min(distinct, 5), 0.2)

    @staticmethod
    def label_quality(fields: Sequence[FormField]) -> float:
        if not fields:
            return 0.0
        total = 0.0
        for f in fields:
            label = f.label.strip()
            if not label or label.lower() == UNKNOWN_FIELD_LABEL.lower() or len(label) < 2:
                continue
            if len(label) >= 5 and " " in label:
                total += 1.0
            elif len(label) >= 3:
                total += 0.7
            else:
                total += 0.3
        return total / len(fields)

    # -- aggregate -----------------------------------------------------------

    def factors(self, container: Node, fields: Sequence[FormField], platform: Platform, page: PageContext) -> ConfidenceFactors:
        return ConfidenceFactors(
            platform_match=self.platform_match(platform, page),
            field_count=self.field_count(fields),
            required_fields=self.required_ratio(fields),
            profile_mapping=self.profile_mapping(fields),
            job_keywords=self.job_keywords(container, page),
            form_structure=self.form_structure(container),
            field_types=self.field_types(fields),
            label_quality=self.label_quality(fields),
        )

    def _weighted(self, factors: ConfidenceFactors) -> Dict[str, float]:
        w = self.weights.model_dump()
        return {name: value * w[name] for name, value in factors.model_dump().items()}

    def score(self, container: Node, fields: Sequence[FormField], platform: Platform, page: PageContext) -> float:
        return self.breakdown(container, fields, platform, page).total_score

    def breakdown(self, container: Node, fields: Sequence[FormField], platform: Platform, page: PageContext) -> ConfidenceBreakdown:
        factors = self.factors(container, fields, platform, page)
        weighted = self._weighted(factors)
        total = max(0.0, min(1.0, sum(weighted.values())))
        event("SCORE", "TRACE", "confidence", platform=platform.value, total=round(total, 4), **factors.model_dump())
        return ConfidenceBreakdown(factors=factors, weighted_scores=weighted, total_score=total)

from __future__ import annotations
from typing import Callable, List, Optional, Tuple
import time

from ...config import DetectionConfig
from ...domains import registered_name
from ...models import Platform
from ...tracing import event
from ...tree import Node, PageTree
from ..classifier import ExtractionHooks, FieldClassifier
from ..job_context import JobContextSelectors
from ..scorer import ConfidenceScorer
from .common import ContainerAnalyzer, StepRules, StrategyResult, containers_with_fields, make_form_id, step_info, unique_containers


APPLY_BUTTON = '[data-jk] .ia-IndeedApplyButton, .indeed-apply-button, [data-testid="apply-button"]'
APPLICATION_FORM = '.ia-IndeedApplyForm, .indeed-apply-form, [data-testid="application-form"]'
FORM_CONTAINER = '.ia-IndeedApplyForm-container, .indeed-apply-form-container, [data-testid="form-container"]'
FORM_FIELD = ".ia-FormField, .form-field"
LABEL_SELECTORS = (".ia-FormField-label", ".ia-Label", '[data-testid*="label"]', ".form-field-label")
REQUIRED_MARKERS = '.required, [data-testid*="required"], .ia-FormField--required'

JOB_SELECTORS = JobContextSelectors(
    title=('[data-testid="jobTitle"]', ".jobsearch-JobInfoHeader-title", 'h1[data-testid="job-title"]'),
    company=('[data-testid="companyName"]', ".jobsearch-InlineCompanyRating", '[data-testid="company-name"]'),
    description=('[data-testid="jobDescription"]', ".jobsearch-jobDescriptionText", '[data-testid="job-description"]'),
    location=('[data-testid="job-location"]', ".jobsearch-JobInfoHeader-subtitle .location", '[data-testid="inlineHeader-companyLocation"]'),
)

STEP_RULES = StepRules(
    indicators='[data-testid*="step"], .step-indicator',
    current='[data-testid*="current-step"], .step-current',
    next_controls='[data-testid="continue-button"], .ia-IndeedApplyForm-continueButton',
    progress='.ia-Progress, [role="progressbar"]',
)


def _label(node: Node) -> Optional[str]:
    wrapper = node.closest(FORM_FIELD)
    if wrapper is None:
        return None
    for css in LABEL_SELECTORS:
        found = wrapper.select_one(css)
        if found is not None and found.text():
            return found.text()
    return None


def _required(node: Node) -> bool:
    wrapper = node.closest(FORM_FIELD)
    if wrapper is None:
        return False
    return wrapper.matches(REQUIRED_MARKERS) or wrapper.select_one(REQUIRED_MARKERS) is not None


def _selector(node: Node) -> Optional[str]:
    if node.attr("id"):
        return f"#{node.attr('id')}"
    if node.attr("data-testid"):
        return f'[data-testid="{node.attr("data-testid")}"]'
    if node.attr("name"):
        return f'[name="{node.attr("name")}"]'
    return None


HOOKS = ExtractionHooks(label=_label, required=_required, selector=_selector)


def _is_indeed(host_or_url: str) -> bool:
    return bool(host_or_url) and registered_name(host_or_url) == "indeed"


class IndeedStrategy:
    """Indeed Apply forms, plus employer forms reached from an Indeed listing."""

    platform = Platform.INDEED

    def __init__(self, scorer: ConfidenceScorer, config: DetectionConfig, *, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.analyzer = ContainerAnalyzer(self.platform, scorer, config, selectors=JOB_SELECTORS, clock=clock)

    def is_indeed_job_page(self, tree: PageTree) -> bool:
        if not _is_indeed(tree.host):
            return False
        url = tree.url.lower()
        return "/job/" in url or "/apply/" in url or "viewjob" in url or tree.select_one(", ".join(JOB_SELECTORS.title)) is not None

    def has_external_application(self, tree: PageTree) -> bool:
        return _is_indeed(tree.referrer) and not _is_indeed(tree.host)

    def is_applicable(self, tree: PageTree) -> bool:
        return self.is_indeed_job_page(tree) or self.has_external_application(tree)

    def _containers(self, tree: PageTree) -> List[Tuple[Node, str]]:
        found: List[Tuple[Node, str]] = []
        if self.is_indeed_job_page(tree):
            targets = unique_containers(tree.select(APPLICATION_FORM) or tree.select(FORM_CONTAINER))
            for target in targets:
                found.append((target, make_form_id("indeed_form", target, len(found))))
        if self.has_external_application(tree):
            for target in containers_with_fields(tree.select("form"), self.config.min_fields_per_form):
                if any(c == target or c.contains(target) or target.contains(c) for c, _ in found):
                    continue
                found.append((target, make_form_id("indeed_external", target, len(found))))
        return found

    def form_type(self, tree: PageTree) -> str:
        if tree.select_one(APPLICATION_FORM) is not None or tree.select_one(APPLY_BUTTON) is not None:
            return "indeed_apply"
        if self.has_external_application(tree):
            return "external_redirect"
        return "unknown"

    def detect(self, tree: PageTree) -> StrategyResult:
        if not self.is_applicable(tree):
            return StrategyResult()
        classifier = FieldClassifier(tree, hooks=HOOKS)
        containers = self._containers(tree)
        result = self.analyzer.analyze(tree, containers, classifier, steps=lambda c: step_info(c, STEP_RULES))
        result.platform_data = {
            "has_indeed_apply": tree.select_one(APPLY_BUTTON) is not None,
            "has_external_application": self.has_external_application(tree),
            "form_type": self.form_type(tree),
        }
        event("DETECT", "DEBUG", "indeed_scan", containers=len(containers), forms=len(result.forms))
        return result

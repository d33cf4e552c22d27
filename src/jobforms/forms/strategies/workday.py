from __future__ import annotations
from typing import Callable, List, Optional, Tuple
import time

from ...config import DetectionConfig
from ...models import FieldType, Platform
from ...tracing import event
from ...tree import Node, PageTree
from ..classifier import ExtractionHooks, FieldClassifier, humanize
from ..job_context import JobContextSelectors
from ..scorer import ConfidenceScorer
from .common import ContainerAnalyzer, StepRules, StrategyResult, make_form_id, step_info, unique_containers


APPLICATION_FORM = '[data-automation-id*="applicationForm"], .css-application-form, [data-uxi-element-id*="applicationForm"]'
FORM_CONTAINER = '[data-automation-id*="formContainer"], .css-form-container, [data-uxi-element-id*="form"]'
APPLY_BUTTON = '[data-automation-id*="apply"], .css-apply-button'
FIELD_WRAPPER = "[data-automation-id], .css-field"
LABEL_SELECTORS = ('[data-automation-id*="label"]', ".css-field-label", '[data-uxi-element-id*="label"]')

JOB_SELECTORS = JobContextSelectors(
    title=('[data-automation-id*="jobTitle"]', '[data-automation-id*="jobPostingTitle"]', "h1[data-automation-id]"),
    company=('[data-automation-id*="company"]', '[data-automation-id*="organization"]'),
    description=('[data-automation-id*="jobDescription"]', '[data-automation-id*="jobPosting"]'),
    location=('[data-automation-id*="location"]', '[data-automation-id*="jobLocation"]'),
)

STEP_RULES = StepRules(
    indicators='[data-automation-id*="step"], [data-automation-id*="progress"]',
    current='[data-automation-id*="currentStep"], .css-current-step',
    next_controls='[data-automation-id*="next"], [data-automation-id*="continue"]',
    progress='.css-progress, [data-automation-id*="progressBar"]',
)


def _label(node: Node) -> Optional[str]:
    # the wrapper search starts above the control itself
    start = node.parent
    wrapper = start.closest(FIELD_WRAPPER) if start is not None else None
    if wrapper is not None:
        for css in LABEL_SELECTORS:
            found = wrapper.select_one(css)
            if found is not None and found.text():
                return found.text()
    automation_id = node.attr("data-automation-id")
    if automation_id:
        return humanize(automation_id)
    return None


def _required(node: Node) -> bool:
    automation_id = (node.attr("data-automation-id") or "").lower()
    return "required" in automation_id or node.attr("data-required") == "true"


def _selector(node: Node) -> Optional[str]:
    if node.attr("data-automation-id"):
        return f'[data-automation-id="{node.attr("data-automation-id")}"]'
    if node.attr("id"):
        return f"#{node.attr('id')}"
    if node.attr("data-uxi-element-id"):
        return f'[data-uxi-element-id="{node.attr("data-uxi-element-id")}"]'
    if node.attr("name"):
        return f'[name="{node.attr("name")}"]'
    return None


def _field_type(node: Node, base: FieldType) -> FieldType:
    automation_id = (node.attr("data-automation-id") or "").lower()
    if "dropdown" in automation_id or "select" in automation_id:
        return FieldType.SELECT
    if "textarea" in automation_id:
        return FieldType.TEXTAREA
    if "fileupload" in automation_id or "attachment" in automation_id:
        return FieldType.FILE
    return base


HOOKS = ExtractionHooks(label=_label, required=_required, selector=_selector, field_type=_field_type)


class WorkdayStrategy:
    platform = Platform.WORKDAY

    def __init__(self, scorer: ConfidenceScorer, config: DetectionConfig, *, clock: Callable[[], float] = time.monotonic):
        self.analyzer = ContainerAnalyzer(self.platform, scorer, config, selectors=JOB_SELECTORS, clock=clock)

    def is_applicable(self, tree: PageTree) -> bool:
        url = tree.url.lower()
        if "workday" in url or "myworkdaysite" in url:
            return True
        if tree.select_one("[data-automation-id], .css-application-form") is not None:
            return True
        if any(c.startswith("wd-") for c in tree.body_classes()):
            return True
        return "workday" in tree.title.lower()

    def _containers(self, tree: PageTree) -> List[Tuple[Node, str]]:
        targets = unique_containers(tree.select(APPLICATION_FORM) or tree.select(FORM_CONTAINER))
        return [(t, make_form_id("workday_form", t, i)) for i, t in enumerate(targets)]

    def portal_type(self, tree: PageTree) -> str:
        url = tree.url.lower()
        if "apply" in url:
            return "application"
        if "job" in url:
            return "job_posting"
        if "career" in url:
            return "career_portal"
        return "unknown"

    def detect(self, tree: PageTree) -> StrategyResult:
        if not self.is_applicable(tree):
            return StrategyResult()
        classifier = FieldClassifier(tree, hooks=HOOKS)
        containers = self._containers(tree)
        result = self.analyzer.analyze(
            tree, containers, classifier, steps=lambda c: step_info(c, STEP_RULES, scope=tree.body)
        )
        page_steps = step_info(tree.body, STEP_RULES)
        result.platform_data = {
            "is_workday_portal": True,
            "has_multi_step_process": page_steps.is_multi_step,
            "current_step": page_steps.current_step,
            "total_steps": page_steps.total_steps,
            "portal_type": self.portal_type(tree),
            "has_apply_button": tree.select_one(APPLY_BUTTON) is not None,
        }
        event("DETECT", "DEBUG", "workday_scan", containers=len(containers), forms=len(result.forms))
        return result

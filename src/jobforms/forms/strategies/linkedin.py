from __future__ import annotations
from typing import Callable, List, Optional, Tuple
import time

from ...config import DetectionConfig
from ...domains import domain
from ...models import Platform
from ...tracing import event
from ...tree import Node, PageTree, is_hidden
from ..classifier import ExtractionHooks, FieldClassifier
from ..job_context import JobContextSelectors
from ..scorer import ConfidenceScorer
from .common import ContainerAnalyzer, StepRules, StrategyResult, make_form_id, step_info, unique_containers


EASY_APPLY_MODAL = '.jobs-easy-apply-modal, [data-test-modal="easy-apply-modal"]'
FORM_CONTAINER = ".jobs-easy-apply-content, .jobs-easy-apply-form-container"
EASY_APPLY_BUTTON = '.jobs-apply-button, [data-control-name="jobdetails_topcard_inapply"], button[aria-label*="Easy Apply"]'
FORM_ELEMENT = ".jobs-easy-apply-form-element, .fb-form-element"
LABEL_SELECTORS = (
    ".jobs-easy-apply-form-element__label",
    ".fb-form-element-label",
    ".artdeco-text-input--label",
    "[data-test-form-element-label]",
)
REQUIRED_MARKERS = ".required, [data-test-required], .jobs-easy-apply-form-element--required"

JOB_SELECTORS = JobContextSelectors(
    title=(
        ".jobs-unified-top-card__job-title",
        ".job-details-jobs-unified-top-card__job-title",
        "h1[data-test-job-title]",
    ),
    company=(
        ".jobs-unified-top-card__company-name",
        ".job-details-jobs-unified-top-card__company-name",
        "[data-test-job-company-name]",
    ),
    description=(
        ".jobs-description-content__text",
        ".jobs-box__html-content",
        "[data-test-job-description]",
    ),
    location=(
        ".jobs-unified-top-card__bullet",
        ".job-details-jobs-unified-top-card__bullet",
        "[data-test-job-location]",
    ),
)

STEP_RULES = StepRules(
    indicators=".jobs-easy-apply-form-section__step, [data-test-step-indicator]",
    current="[data-test-current-step], .jobs-easy-apply-form-section__step--current",
    next_controls='.jobs-easy-apply-form-section__next-btn, [aria-label="Continue to next step"], [data-easy-apply-next-button]',
    progress=".artdeco-completeness-meter-linear, [data-test-progress-bar]",
)


def _label(node: Node) -> Optional[str]:
    wrapper = node.closest(FORM_ELEMENT)
    if wrapper is None:
        return None
    for css in LABEL_SELECTORS:
        found = wrapper.select_one(css)
        if found is not None and found.text():
            return found.text()
    return None


def _required(node: Node) -> bool:
    wrapper = node.closest(FORM_ELEMENT)
    if wrapper is None:
        return False
    return wrapper.matches(REQUIRED_MARKERS) or wrapper.select_one(REQUIRED_MARKERS) is not None


HOOKS = ExtractionHooks(label=_label, required=_required)


class LinkedInStrategy:
    """Easy Apply modal detection on linkedin.com job pages."""

    platform = Platform.LINKEDIN

    def __init__(self, scorer: ConfidenceScorer, config: DetectionConfig, *, clock: Callable[[], float] = time.monotonic):
        self.analyzer = ContainerAnalyzer(self.platform, scorer, config, selectors=JOB_SELECTORS, clock=clock)

    def is_applicable(self, tree: PageTree) -> bool:
        if not tree.host or domain(tree.host) != "linkedin.com":
            return False
        url = tree.url.lower()
        return "/jobs/" in url or "/job/" in url or tree.select_one(", ".join(JOB_SELECTORS.title)) is not None

    def _containers(self, tree: PageTree) -> List[Tuple[Node, str]]:
        targets: List[Node] = []
        for modal in tree.select(EASY_APPLY_MODAL):
            targets.extend(modal.select(FORM_CONTAINER) or [modal])
        if not targets:
            targets = tree.select(FORM_CONTAINER)
        # content and form-container wrappers nest; keep the outermost
        return [(t, make_form_id("linkedin_easy_apply", t, i)) for i, t in enumerate(unique_containers(targets))]

    def detect(self, tree: PageTree) -> StrategyResult:
        if not self.is_applicable(tree):
            return StrategyResult()
        classifier = FieldClassifier(tree, hooks=HOOKS)
        containers = self._containers(tree)
        result = self.analyzer.analyze(
            tree,
            containers,
            classifier,
            steps=lambda c: step_info(c, STEP_RULES, scope=c.closest(EASY_APPLY_MODAL) or c),
        )
        modal = tree.select_one(EASY_APPLY_MODAL)
        result.platform_data = {
            "has_easy_apply": tree.select_one(EASY_APPLY_BUTTON) is not None or modal is not None,
            "modal_visible": modal is not None and not is_hidden(modal),
            "form_visible": any(not is_hidden(c) for c, _ in containers),
        }
        event("DETECT", "DEBUG", "linkedin_scan", containers=len(containers), forms=len(result.forms))
        return result

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple
import logging
import re
import time

from ...config import DetectionConfig
from ...models import DetectedForm, DetectionError, ErrorCode, JobContext, Platform
from ...tracing import event
from ...tree import Node, PageTree
from ..classifier import FieldClassifier, generic_selector, supported_features
from ..job_context import JobContextSelectors, extract_job_context
from ..scorer import ConfidenceScorer, PageContext


logger = logging.getLogger(__name__)

_NAV_TEXT_RE = re.compile(r"\b(next|continue)\b", re.I)
_DIGITS_RE = re.compile(r"(\d+)")
_OF_TOTAL_RE = re.compile(r"\b(\d+)\s*(?:of|/)\s*(\d+)\b", re.I)
_FORM_ID_RE = re.compile(r"[^a-zA-Z0-9_]")


@dataclass
class StrategyResult:
    forms: List[DetectedForm] = field(default_factory=list)
    errors: List[DetectionError] = field(default_factory=list)
    platform_data: Dict[str, Any] = field(default_factory=dict)


class PlatformStrategy(Protocol):
    platform: Platform

    def is_applicable(self, tree: PageTree) -> bool: ...

    def detect(self, tree: PageTree) -> StrategyResult: ...


@dataclass(frozen=True)
class StepRules:
    indicators: str = '[data-step], [class*="step-indicator"], .progress li, .stepper li'
    current: str = '[data-current-step], [aria-current="step"], [class*="step"].active, [class*="step"].current'
    next_controls: str = 'button[class*="next"], button[class*="continue"]'
    progress: Optional[str] = '.progress, .stepper, [role="progressbar"]'


GENERIC_STEP_RULES = StepRules()


@dataclass
class StepInfo:
    is_multi_step: bool = False
    current_step: Optional[int] = None
    total_steps: Optional[int] = None


def has_navigation_control(container: Node, rules: StepRules) -> bool:
    if rules.next_controls and container.select_one(rules.next_controls) is not None:
        return True
    for ctl in container.select('button, input[type="submit"], input[type="button"], [role="button"]'):
        label = " ".join(filter(None, [ctl.text(), ctl.attr("value"), ctl.attr("aria-label")]))
        if _NAV_TEXT_RE.search(label):
            return True
    return False


def _step_number(node: Node) -> Optional[int]:
    for attr_name in ("data-step", "data-step-number", "aria-valuenow"):
        raw = node.attr(attr_name)
        if raw and raw.strip().isdigit():
            return int(raw)
    m = _DIGITS_RE.search(node.text())
    return int(m.group(1)) if m else None


def step_info(container: Node, rules: StepRules = GENERIC_STEP_RULES, scope: Optional[Node] = None) -> StepInfo:
    """Multi-step detection: a next/continue control, >=2 step indicators, or a progress bar."""
    holder = scope or container
    indicators = holder.select(rules.indicators) if rules.indicators else []
    progress = holder.select_one(rules.progress) if rules.progress else None
    multi = has_navigation_control(container, rules) or len(indicators) >= 2 or progress is not None
    if not multi:
        return StepInfo()

    current: Optional[int] = None
    total: Optional[int] = None
    marker = holder.select_one(rules.current) if rules.current else None
    if marker is not None:
        m = _OF_TOTAL_RE.search(marker.text())
        if m:
            current, total = int(m.group(1)), int(m.group(2))
        else:
            current = _step_number(marker)
            if current is None and marker in indicators:
                current = indicators.index(marker) + 1
    if current is None and progress is not None:
        m = _OF_TOTAL_RE.search(progress.text())
        if m:
            current, total = int(m.group(1)), int(m.group(2))

    total_node = holder.select_one("[data-total-steps]")
    if total is None and total_node is not None:
        raw = total_node.attr("data-total-steps") or ""
        if raw.strip().isdigit():
            total = int(raw)
    if total is None and len(indicators) >= 2:
        total = len(indicators)
    return StepInfo(True, current or 1, total)


def make_form_id(prefix: str, container: Node, position: int) -> str:
    ident = container.attr("id") or container.attr("class") or "unknown"
    return _FORM_ID_RE.sub("_", f"{prefix}_{ident}_{position}")


def unique_containers(candidates: Sequence[Node]) -> List[Node]:
    """
    Drop repeats and nesting. ``form`` elements win over generic containers
    they sit in; among generic containers the outermost wins.
    """
    ordered: List[Node] = []
    for node in candidates:
        if node not in ordered:
            ordered.append(node)
    forms = [n for n in ordered if n.tag == "form"]
    kept: List[Node] = []
    for node in ordered:
        if node.tag == "form":
            if any(other != node and other.contains(node) for other in forms):
                continue
        else:
            if any(f.contains(node) or node.contains(f) for f in forms):
                continue
            if any(other != node and other.tag != "form" and other.contains(node) for other in ordered):
                continue
        kept.append(node)
    return kept


def containers_with_fields(nodes: Sequence[Node], minimum: int = 3) -> List[Node]:
    return [n for n in nodes if len(n.select("input, textarea, select")) >= minimum]


class ContainerAnalyzer:
    """
    Shared per-container pipeline: classify, gate, score, step info.

    Containers are analysed in document order until ``field_detection_timeout``
    runs out; the rest are skipped and a ``DETECTION_TIMEOUT`` error is recorded.
    """

    def __init__(
        self,
        platform: Platform,
        scorer: ConfidenceScorer,
        config: DetectionConfig,
        *,
        selectors: Optional[JobContextSelectors] = None,
        accept_title: Optional[Callable[[str], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.platform = platform
        self.scorer = scorer
        self.config = config
        self.selectors = selectors
        self.accept_title = accept_title
        self.clock = clock

    def job_context(self, tree: PageTree) -> Optional[JobContext]:
        if not self.config.enable_job_context_extraction:
            return None
        try:
            return extract_job_context(tree, self.selectors, accept_title=self.accept_title)
        except Exception as e:
            # forms are still reported without context
            logger.warning("job context extraction failed on %s: %s", tree.url, e)
            event("DETECT", "INFO", "job_context_failed", url=tree.url, error=str(e))
            return None

    def analyze(
        self,
        tree: PageTree,
        containers: Sequence[Tuple[Node, str]],
        classifier: FieldClassifier,
        *,
        steps: Callable[[Node], StepInfo] = step_info,
    ) -> StrategyResult:
        result = StrategyResult()
        if not containers:
            return result
        started = self.clock()
        budget = self.config.field_detection_timeout
        page = PageContext.from_tree(tree)
        context: Optional[JobContext] = None
        context_done = False
        for index, (container, form_id) in enumerate(containers):
            if index and self.clock() - started > budget:
                result.errors.append(
                    DetectionError(
                        code=ErrorCode.DETECTION_TIMEOUT,
                        message=f"Field detection timeout exceeded: {budget}s",
                    )
                )
                event("DETECT", "INFO", "field_detection_timeout", platform=self.platform.value, skipped=len(containers) - index)
                break
            try:
                fields = classifier.classify_all(container)
                if len(fields) < self.config.min_fields_per_form:
                    event("DETECT", "DEBUG", "container_skipped", form_id=form_id, fields=len(fields))
                    continue
                if not context_done:
                    context = self.job_context(tree)
                    context_done = True
                info = steps(container)
                form = DetectedForm(
                    platform=self.platform,
                    form_id=form_id,
                    url=tree.url,
                    fields=fields,
                    job_context=context,
                    confidence=self.scorer.score(container, fields, self.platform, page),
                    supported_features=supported_features(fields),
                    detected_at=datetime.now(),
                    is_multi_step=info.is_multi_step,
                    current_step=info.current_step if info.is_multi_step else None,
                    total_steps=info.total_steps if info.is_multi_step else None,
                )
                result.forms.append(form)
                event("DETECT", "DEBUG", "form_candidate", form_id=form_id, fields=len(fields), confidence=round(form.confidence, 4))
            except Exception as e:
                logger.warning("failed to analyze container %s: %s", form_id, e)
                result.errors.append(
                    DetectionError(
                        code=ErrorCode.FORM_ANALYSIS_ERROR,
                        message=f"Failed to analyze form: {e}",
                        selector=generic_selector(container),
                    )
                )
        return result

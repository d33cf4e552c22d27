"""
Live tracking of application forms.

``FormMonitor`` keeps a registry of observed form containers, reacts to
mutation and interaction notifications from a ``ChangeFeed`` and maintains
one immutable ``FormValidationState`` per form. Field edits are debounced
per (form, field, kind); structural changes trigger a debounced rescan of
the whole container. ``validation_changed`` fires only when the derived
state actually differs.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
import logging
import re

from ..config import MonitorConfig
from ..models import ChangeType, FormChangeEvent, FormValidationState, MonitorStats
from ..tracing import event
from ..tree import Node, PageTree, is_hidden
from ..forms.classifier import FieldClassifier, element_key, is_classifiable, native_type
from .debounce import AsyncioScheduler, DebounceRegistry, Scheduler
from .feed import ChangeFeed, InteractionEvent, MutationRecord, Subscription


logger = logging.getLogger(__name__)

MONITOR_ID_ATTR = "data-form-monitor-id"
FOCUS_ATTR = "data-form-monitor-focus"

FIELD_SELECTOR = ", ".join(
    [
        'input:not([type="hidden"])',
        "textarea",
        "select",
        '[contenteditable="true"]',
        '[role="textbox"]',
        '[role="combobox"]',
        '[role="listbox"]',
    ]
)
STEP_INDICATORS = ".step, .wizard-step, .form-step, [data-step], .progress-bar, .stepper, .multi-step"
STEP_ELEMENTS = ".step, .wizard-step, .form-step, [data-step]"
ACTIVE_STEP = ".step.active, .wizard-step.active, .form-step.active, [data-step].active"
PROGRESS_STEPS = ".progress-step, .stepper-step"
HIDDEN_SECTIONS = '[style*="display: none"], [style*="display:none"], .hidden, [hidden]'

_NAV_WORDS = ("next", "continue", "previous")
_ERROR_CLASSES = {"error", "invalid", "is-invalid"}
_WARNING_CLASSES = {"warning", "warn"}
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_URL_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*:\S+$")
_ID_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9-]+")

FieldValue = Union[str, bool]
ChangeListener = Callable[[FormChangeEvent], None]
ValidationListener = Callable[[FormValidationState], None]


@dataclass
class MonitoredForm:
    id: str
    container: Node
    fields: Dict[str, Node]
    validation_state: FormValidationState
    last_changed: datetime = field(default_factory=datetime.now)
    change_count: int = 0
    is_multi_step: bool = False
    current_step: Optional[int] = None
    total_steps: Optional[int] = None
    values: Dict[str, FieldValue] = field(default_factory=dict)
    touched: set = field(default_factory=set)


# -- field reading --------------------------------------------------------------


def is_disabled(node: Node) -> bool:
    return node.has_attr("disabled") or node.attr("aria-disabled") == "true"


def is_field_required(node: Node) -> bool:
    if is_disabled(node):
        return False
    return node.has_attr("required") or node.attr("aria-required") == "true" or "required" in node.classes


def read_value(node: Node, scope: Optional[Node] = None) -> FieldValue:
    """Current value of a control as the static tree records it."""
    if node.tag == "input":
        kind = native_type(node)
        if kind == "checkbox":
            return node.has_attr("checked")
        if kind == "radio":
            name = node.attr("name")
            group = [node]
            if name and scope is not None:
                group = [r for r in scope.select('input[type="radio"]') if r.attr("name") == name]
            for radio in group:
                if radio.has_attr("checked"):
                    return radio.attr("value") or "on"
            return ""
        return node.attr("value") or ""
    if node.tag == "textarea":
        return node.attr("value") if node.has_attr("value") else node.text()
    if node.tag == "select":
        options = node.select("option")
        chosen = next((o for o in options if o.has_attr("selected")), options[0] if options else None)
        if chosen is None:
            return ""
        return chosen.attr("value") if chosen.has_attr("value") else chosen.text()
    return node.text() or node.attr("value") or ""


def is_field_completed(value: FieldValue) -> bool:
    if isinstance(value, bool):
        return value
    return bool(value.strip())


class FormMonitor:
    def __init__(
        self,
        tree: PageTree,
        feed: ChangeFeed,
        scheduler: Optional[Scheduler] = None,
        config: Optional[MonitorConfig] = None,
    ):
        self.tree = tree
        self.feed = feed
        self.config = config or MonitorConfig()
        self.debounce = DebounceRegistry(scheduler or AsyncioScheduler())
        self.classifier = FieldClassifier(tree)
        self._forms: Dict[str, MonitoredForm] = {}
        self._change_listeners: List[ChangeListener] = []
        self._validation_listeners: List[ValidationListener] = []
        self._subscription: Optional[Subscription] = None
        self.is_monitoring = False

    # -- lifecycle -----------------------------------------------------------

    def start_monitoring(self) -> None:
        if self.is_monitoring:
            return
        self._subscription = self.feed.subscribe(self.tree.root, self._on_mutations, self._on_interaction)
        self.is_monitoring = True
        for form in self.tree.select("form"):
            self.add_form(form)
        event("MONITOR", "INFO", "monitoring_started", forms=len(self._forms))

    def stop_monitoring(self) -> None:
        if not self.is_monitoring:
            return
        if self._subscription is not None:
            self._subscription.disconnect()
            self._subscription = None
        self.debounce.clear()
        self.is_monitoring = False
        event("MONITOR", "INFO", "monitoring_stopped", forms=len(self._forms))

    def destroy(self) -> None:
        self.stop_monitoring()
        for form in list(self._forms.values()):
            form.container.remove_attr(MONITOR_ID_ATTR)
        self._forms.clear()
        self._change_listeners.clear()
        self._validation_listeners.clear()

    # -- registration --------------------------------------------------------

    def _generate_form_id(self, container: Node) -> str:
        if container.attr("id"):
            base = f"form-{container.attr('id')}"
        elif container.attr("name"):
            base = f"form-{container.attr('name')}"
        else:
            same_tag = self.tree.select(container.tag) if container.tag else []
            position = same_tag.index(container) if container in same_tag else len(self._forms)
            base = f"form-{container.tag or 'node'}-{position}"
        candidate, n = base, 1
        while candidate in self._forms:
            n += 1
            candidate = f"{base}-{n}"
        return candidate

    def _registered_id(self, container: Node) -> Optional[str]:
        marker = container.attr(MONITOR_ID_ATTR)
        if marker and marker in self._forms and self._forms[marker].container == container:
            return marker
        for form in self._forms.values():
            if form.container == container:
                return form.id
        return None

    def add_form(self, container: Node, form_id: Optional[str] = None) -> Optional[str]:
        """
        Start observing ``container``. Registering the same container again
        returns the existing id. Returns None when the container has no
        classifiable field.
        """
        existing = self._registered_id(container)
        if existing is not None:
            return existing

        fields = self.scan_fields(container)
        if not fields:
            event("MONITOR", "DEBUG", "form_skipped_no_fields", tag=container.tag)
            return None

        fid = form_id if form_id and form_id not in self._forms else self._generate_form_id(container)
        multi = self.detect_multi_step(container)
        form = MonitoredForm(
            id=fid,
            container=container,
            fields=fields,
            validation_state=FormValidationState.derive(fid),
            is_multi_step=multi,
            current_step=self.detect_current_step(container) if multi else None,
            total_steps=self.detect_total_steps(container) if multi else None,
            values={k: read_value(n, container) for k, n in fields.items()},
        )
        form.validation_state = self._compute_state(form)
        container.set_attr(MONITOR_ID_ATTR, fid)
        self._forms[fid] = form
        event("MONITOR", "INFO", "form_added", form_id=fid, fields=len(fields), multi_step=multi)
        self._emit(FormChangeEvent(type=ChangeType.FORM_ADDED, form_id=fid))
        return fid

    def remove_form(self, form_id: str) -> bool:
        form = self._forms.pop(form_id, None)
        if form is None:
            return False
        form.container.remove_attr(MONITOR_ID_ATTR)
        self.debounce.cancel_form(form_id)
        event("MONITOR", "INFO", "form_removed", form_id=form_id)
        self._emit(FormChangeEvent(type=ChangeType.FORM_REMOVED, form_id=form_id))
        return True

    # -- queries -------------------------------------------------------------

    def get_form(self, form_id: str) -> Optional[MonitoredForm]:
        return self._forms.get(form_id)

    def get_all_forms(self) -> List[MonitoredForm]:
        return list(self._forms.values())

    def get_validation_state(self, form_id: str) -> Optional[FormValidationState]:
        form = self._forms.get(form_id)
        return form.validation_state if form else None

    def get_stats(self) -> MonitorStats:
        forms = self._forms.values()
        return MonitorStats(
            is_monitoring=self.is_monitoring,
            forms_count=len(self._forms),
            total_fields=sum(len(f.fields) for f in forms),
            valid_forms=sum(1 for f in forms if f.validation_state.is_valid),
            multi_step_forms=sum(1 for f in forms if f.is_multi_step),
        )

    # -- listeners -----------------------------------------------------------

    def add_change_listener(self, listener: ChangeListener) -> None:
        if listener not in self._change_listeners:
            self._change_listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        if listener in self._change_listeners:
            self._change_listeners.remove(listener)

    def add_validation_listener(self, listener: ValidationListener) -> None:
        if listener not in self._validation_listeners:
            self._validation_listeners.append(listener)

    def remove_validation_listener(self, listener: ValidationListener) -> None:
        if listener in self._validation_listeners:
            self._validation_listeners.remove(listener)

    def _emit(self, change: FormChangeEvent) -> None:
        event("MONITOR", "TRACE", "change", type=change.type.value, form_id=change.form_id, field_id=change.field_id)
        for listener in list(self._change_listeners):
            try:
                listener(change)
            except Exception as e:
                logger.warning("change listener failed: %s", e)

    def _notify_validation(self, state: FormValidationState) -> None:
        for listener in list(self._validation_listeners):
            try:
                listener(state)
            except Exception as e:
                logger.warning("validation listener failed: %s", e)

    # -- field scanning ------------------------------------------------------

    def _is_visible(self, node: Node, container: Node) -> bool:
        # styled upload buttons hide the real file input itself
        if node.tag == "input" and native_type(node) == "file":
            parent = node.parent
            return parent is None or not is_hidden(parent, within=container)
        return not is_hidden(node, within=container)

    def _field_id(self, node: Node, index: int) -> str:
        key = element_key(node)
        if key:
            return key
        label = self.classifier.generic_label(node)
        raw = f"{node.tag}-{node.attr('type') or ''}-{node.attr('placeholder') or ''}-{label}-{index}"
        return _ID_SANITIZE_RE.sub("-", raw).strip("-")

    def scan_fields(self, container: Node) -> Dict[str, Node]:
        """Visible, classifiable controls of ``container`` keyed by field id."""
        fields: Dict[str, Node] = {}
        for index, node in enumerate(container.select(FIELD_SELECTOR)):
            if node.tag in {"input", "textarea", "select", "button"} and not is_classifiable(node):
                continue
            if not self._is_visible(node, container):
                continue
            fid = self._field_id(node, index)
            if fid in fields:
                if native_type(node) == "radio":
                    continue
                fid = f"{fid}-{index}"
            fields[fid] = node
        return fields

    def _field_for(self, form: MonitoredForm, node: Node) -> Optional[str]:
        for fid, candidate in form.fields.items():
            if candidate == node:
                return fid
        if node.tag == "input" and native_type(node) == "radio" and node.attr("name"):
            for fid, candidate in form.fields.items():
                if native_type(candidate) == "radio" and candidate.attr("name") == node.attr("name"):
                    return fid
        return None

    def _form_for(self, node: Node) -> Optional[MonitoredForm]:
        holder = node.closest(f"[{MONITOR_ID_ATTR}]")
        if holder is None:
            return None
        return self._forms.get(holder.attr(MONITOR_ID_ATTR) or "")

    # -- multi-step ----------------------------------------------------------

    @staticmethod
    def detect_multi_step(container: Node) -> bool:
        if container.select_one(STEP_INDICATORS) is not None:
            return True
        return len(container.select(HIDDEN_SECTIONS)) > 2

    @staticmethod
    def detect_current_step(container: Node) -> int:
        active = container.select_one(ACTIVE_STEP)
        if active is not None:
            for attr_name in ("data-step", "data-step-number"):
                raw = active.attr(attr_name)
                if raw and raw.strip().isdigit():
                    return int(raw)
            m = re.search(r"\d+", active.text())
            if m:
                return int(m.group(0))
        return 1

    @staticmethod
    def detect_total_steps(container: Node) -> int:
        steps = container.select(STEP_ELEMENTS)
        if steps:
            return len(steps)
        progress = container.select(PROGRESS_STEPS)
        if progress:
            return len(progress)
        return 1

    @staticmethod
    def is_navigation_control(node: Optional[Node]) -> bool:
        if node is None:
            return False
        label = f"{node.text()} {node.attr('value') or ''} {node.attr('aria-label') or ''}".lower()
        return any(word in label for word in _NAV_WORDS)

    # -- validation ----------------------------------------------------------

    def _described_text(self, node: Node) -> str:
        refs = (node.attr("aria-describedby") or "").split()
        parts = []
        for ref in refs:
            target = self.tree.find_by_id(ref)
            if target is not None and target.text():
                parts.append(target.text())
        return " ".join(parts)

    def validate_field(self, node: Node, value: FieldValue) -> Tuple[List[str], List[str]]:
        errors: List[str] = []
        warnings: List[str] = []
        if is_disabled(node):
            return errors, warnings
        if is_field_required(node) and not is_field_completed(value):
            errors.append("This field is required")
        if node.tag == "input" and isinstance(value, str) and value:
            kind = native_type(node)
            if (kind == "email" and not _EMAIL_RE.match(value)) or (kind == "url" and not _URL_RE.match(value)):
                errors.append("Please enter a valid value")
            pattern = node.attr("pattern")
            if pattern:
                try:
                    mismatch = re.fullmatch(pattern, value) is None
                except re.error:
                    # browsers ignore an invalid pattern attribute
                    mismatch = False
                if mismatch:
                    errors.append("Please match the requested format")
        if isinstance(value, str) and value:
            for attr_name, message, too_far in (
                ("minlength", "Minimum length is {}", lambda n: len(value) < n),
                ("maxlength", "Maximum length is {}", lambda n: len(value) > n),
            ):
                raw = node.attr(attr_name)
                if raw and raw.strip().isdigit() and too_far(int(raw)):
                    errors.append(message.format(int(raw)))
        if node.attr("aria-invalid") == "true" or _ERROR_CLASSES & set(node.classes):
            described = self._described_text(node) or "Please enter a valid value"
            if described not in errors:
                errors.append(described)
        if _WARNING_CLASSES & set(node.classes):
            warnings.append(self._described_text(node) or "Please review this field")
        return errors, warnings

    def _compute_state(self, form: MonitoredForm) -> FormValidationState:
        required: List[str] = []
        completed: List[str] = []
        errors: Dict[str, List[str]] = {}
        warnings: Dict[str, List[str]] = {}
        for fid, node in form.fields.items():
            value = read_value(node, form.container)
            if is_field_required(node):
                required.append(fid)
            if is_field_completed(value):
                completed.append(fid)
            if fid in form.touched:
                errs, warns = self.validate_field(node, value)
                errors[fid] = errs
                warnings[fid] = warns
        return FormValidationState.derive(
            form.id, errors=errors, warnings=warnings, required_fields=required, completed_fields=completed
        )

    def _commit(self, form: MonitoredForm, new_state: FormValidationState) -> bool:
        old = form.validation_state
        if not new_state.differs_from(old):
            if new_state.required_fields != old.required_fields:
                form.validation_state = old.model_copy(update={"required_fields": new_state.required_fields})
            return False
        form.validation_state = new_state
        event("MONITOR", "DEBUG", "validation_changed", form_id=form.id, is_valid=new_state.is_valid, errors=len(new_state.errors))
        self._emit(FormChangeEvent(type=ChangeType.VALIDATION_CHANGED, form_id=form.id, old_value=old, new_value=new_state))
        self._notify_validation(new_state)
        return True

    def revalidate(self, form_id: str) -> Optional[FormValidationState]:
        form = self._forms.get(form_id)
        if form is None:
            return None
        self._commit(form, self._compute_state(form))
        return form.validation_state

    def validate_form(self, form_id: str) -> Optional[FormValidationState]:
        """Validate every field, as a submit attempt does."""
        form = self._forms.get(form_id)
        if form is None:
            return None
        form.touched.update(form.fields)
        return self.revalidate(form_id)

    _UPDATABLE = ("errors", "warnings", "required_fields", "completed_fields")

    def update_validation_state(self, form_id: str, **updates: Any) -> Optional[FormValidationState]:
        """
        Replace parts of a form's validation state. ``is_valid`` is always
        re-derived from the result and cannot be set directly.
        """
        form = self._forms.get(form_id)
        if form is None:
            return None
        unknown = set(updates) - set(self._UPDATABLE)
        if unknown:
            raise TypeError(f"cannot update {', '.join(sorted(unknown))}; allowed: {', '.join(self._UPDATABLE)}")
        old = form.validation_state
        merged = {k: updates.get(k, getattr(old, k)) for k in self._UPDATABLE}
        self._commit(form, FormValidationState.derive(form_id, **merged))
        return form.validation_state

    # -- interaction handling ------------------------------------------------

    def _on_interaction(self, ev: InteractionEvent) -> None:
        form = self._form_for(ev.target)
        if form is None:
            return
        if ev.kind in ("input", "change"):
            fid = self._field_for(form, ev.target)
            if fid is None:
                return
            self.debounce.schedule(
                (form.id, fid, ev.kind),
                self.config.field_debounce,
                lambda form_id=form.id, field_id=fid: self._handle_field_change(form_id, field_id),
            )
        elif ev.kind == "focus":
            ev.target.set_attr(FOCUS_ATTR, "true")
        elif ev.kind == "blur":
            ev.target.remove_attr(FOCUS_ATTR)
            fid = self._field_for(form, ev.target)
            if fid is not None:
                form.touched.add(fid)
                self.revalidate(form.id)
        elif ev.kind == "submit":
            self.validate_form(form.id)
            if self.is_navigation_control(ev.submitter):
                self.schedule_rescan(form.id)
        elif ev.kind == "click":
            if form.is_multi_step and self.is_navigation_control(ev.target):
                self.schedule_rescan(form.id)

    def _handle_field_change(self, form_id: str, field_id: str) -> None:
        form = self._forms.get(form_id)
        if form is None or field_id not in form.fields:
            return
        node = form.fields[field_id]
        old = form.values.get(field_id)
        new = read_value(node, form.container)
        form.values[field_id] = new
        form.last_changed = datetime.now()
        form.change_count += 1
        form.touched.add(field_id)
        self._emit(FormChangeEvent(type=ChangeType.FIELD_CHANGED, form_id=form_id, field_id=field_id, old_value=old, new_value=new))
        self.revalidate(form_id)

    # -- mutation handling ---------------------------------------------------

    def _on_mutations(self, records: Sequence[MutationRecord]) -> None:
        for record in records:
            try:
                if record.kind == "child_list":
                    self._on_child_list(record)
                elif record.kind == "attributes":
                    self._on_attribute(record)
            except Exception as e:
                logger.warning("failed to handle %s mutation: %s", record.kind, e)

    def _on_child_list(self, record: MutationRecord) -> None:
        if record.removed:
            for form in list(self._forms.values()):
                if not form.container.is_connected():
                    self.remove_form(form.id)
        for node in record.added:
            candidates = [node] if node.tag == "form" else []
            candidates.extend(node.select("form"))
            for candidate in candidates:
                if self._registered_id(candidate) is None:
                    self.add_form(candidate)
        form = self._form_for(record.target)
        if form is not None:
            self.schedule_rescan(form.id)

    def _on_attribute(self, record: MutationRecord) -> None:
        name = record.attribute or ""
        if name not in self.config.observed_attributes:
            return
        form = self._form_for(record.target)
        if form is None:
            return
        fid = self._field_for(form, record.target)
        if fid is None:
            if name in ("class", "style", "hidden"):
                self.schedule_rescan(form.id)
            return
        if name in ("disabled", "required", "aria-required"):
            form.last_changed = datetime.now()
            form.change_count += 1
            self._emit(
                FormChangeEvent(
                    type=ChangeType.FIELD_CHANGED,
                    form_id=form.id,
                    field_id=fid,
                    old_value=record.old_value,
                    new_value=record.target.attr(name),
                )
            )
            self.revalidate(form.id)
        elif name in ("aria-invalid", "aria-describedby", "class"):
            form.touched.add(fid)
            self.revalidate(form.id)
        elif name in ("style", "hidden"):
            self.schedule_rescan(form.id)

    # -- rescans -------------------------------------------------------------

    def schedule_rescan(self, form_id: str) -> None:
        self.debounce.schedule((form_id, "*", "rescan"), self.config.rescan_debounce, lambda: self.rescan(form_id))

    def rescan(self, form_id: str) -> None:
        """
        Re-read the container's visible fields. Emits field_removed and
        field_added for the difference; a step change resets the
        validation state for the new field set.
        """
        form = self._forms.get(form_id)
        if form is None:
            return
        if not form.container.is_connected():
            self.remove_form(form_id)
            return

        fresh = self.scan_fields(form.container)
        removed = [fid for fid in form.fields if fid not in fresh]
        added = [fid for fid in fresh if fid not in form.fields]

        multi = self.detect_multi_step(form.container)
        step = self.detect_current_step(form.container) if multi else None
        step_changed = step != form.current_step

        form.fields = fresh
        form.is_multi_step = multi
        form.current_step = step
        form.total_steps = self.detect_total_steps(form.container) if multi else None
        for fid in removed:
            form.values.pop(fid, None)
            form.touched.discard(fid)
        for fid in added:
            form.values[fid] = read_value(fresh[fid], form.container)
        if step_changed:
            form.touched.clear()
        if removed or added or step_changed:
            form.last_changed = datetime.now()
            form.change_count += 1

        event("MONITOR", "DEBUG", "rescan", form_id=form_id, added=len(added), removed=len(removed), step=step)
        for fid in removed:
            self.debounce.cancel((form_id, fid, "input"))
            self.debounce.cancel((form_id, fid, "change"))
            self._emit(FormChangeEvent(type=ChangeType.FIELD_REMOVED, form_id=form_id, field_id=fid))
        for fid in added:
            self._emit(FormChangeEvent(type=ChangeType.FIELD_ADDED, form_id=form_id, field_id=fid))
        self.revalidate(form_id)

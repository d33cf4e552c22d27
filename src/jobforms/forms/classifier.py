from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence
import re

from ..models import UNKNOWN_FIELD_LABEL, AutofillFeature, FieldType, FormField, ValidationRule
from ..tree import Node, PageTree, normalize_ws
from .profile_map import DEFAULT_PROFILE_MAPPINGS, ProfileMapping, map_profile_field


FIELD_DISCOVERY_SELECTOR = 'input, textarea, select, button[type="file"]'
REJECTED_INPUT_TYPES = {"hidden", "submit", "button", "reset", "image"}

TYPE_MAP: Dict[str, FieldType] = {
    "text": FieldType.TEXT,
    "email": FieldType.EMAIL,
    "tel": FieldType.PHONE,
    "phone": FieldType.PHONE,
    "textarea": FieldType.TEXTAREA,
    "select": FieldType.SELECT,
    "select-one": FieldType.SELECT,
    "select-multiple": FieldType.SELECT,
    "checkbox": FieldType.CHECKBOX,
    "radio": FieldType.RADIO,
    "file": FieldType.FILE,
    "date": FieldType.DATE,
    "number": FieldType.NUMBER,
    "url": FieldType.URL,
}

_COMBO_ROLES = {"combobox", "listbox"}
_COMBO_CLASS_RE = re.compile(r"typeahead|combobox|dropdown", re.I)
_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")
_NON_WORD_RE = re.compile(r"[^A-Za-z0-9]+")
_MAX_SIBLING_LABEL = 100


@dataclass(frozen=True)
class ExtractionHooks:
    """Platform overrides consulted before the generic rules."""

    label: Optional[Callable[[Node], Optional[str]]] = None
    required: Optional[Callable[[Node], bool]] = None
    selector: Optional[Callable[[Node], Optional[str]]] = None
    field_type: Optional[Callable[[Node, FieldType], FieldType]] = None


def native_type(node: Node) -> str:
    if node.tag in {"textarea", "select"}:
        if node.tag == "select" and node.has_attr("multiple"):
            return "select-multiple"
        return node.tag
    return (node.attr("type") or "text").strip().lower()


def is_classifiable(node: Node) -> bool:
    if node.tag == "button":
        return native_type(node) == "file"
    if node.tag == "input":
        return native_type(node) not in REJECTED_INPUT_TYPES
    return node.tag in {"textarea", "select"}


def element_key(node: Node) -> Optional[str]:
    """Stable id for a control; radio groups are keyed by their shared name."""
    if native_type(node) == "radio" and node.attr("name"):
        return node.attr("name")
    return node.attr("id") or node.attr("name") or None


def humanize(name: str) -> str:
    spaced = _CAMEL_RE.sub(r"\1 \2", name)
    words = _NON_WORD_RE.sub(" ", spaced).split()
    return " ".join(w.capitalize() for w in words)


def map_field_type(node: Node) -> FieldType:
    ftype = TYPE_MAP.get(native_type(node), FieldType.TEXT)
    if ftype in (FieldType.FILE, FieldType.CHECKBOX, FieldType.RADIO):
        return ftype
    role = (node.attr("role") or "").lower()
    if role in _COMBO_ROLES or _COMBO_CLASS_RE.search(node.attr("class") or ""):
        return FieldType.SELECT
    return ftype


def _strip_value(label_text: str, value: Optional[str]) -> str:
    if value:
        label_text = label_text.replace(value, "")
    return normalize_ws(label_text)


def _clean_label(label: str) -> str:
    return normalize_ws(label.rstrip().rstrip("*:").rstrip())


def generic_selector(node: Node) -> str:
    if node.attr("id"):
        return f"#{node.attr('id')}"
    if node.attr("name"):
        return f'[name="{node.attr("name")}"]'
    classes = "".join(f".{c}" for c in node.classes)
    type_part = f'[type="{node.attr("type")}"]' if node.attr("type") else ""
    return f"{node.tag}{classes}{type_part}"


class FieldClassifier:
    """Turns candidate controls into ``FormField`` descriptions."""

    def __init__(
        self,
        tree: PageTree,
        *,
        hooks: Optional[ExtractionHooks] = None,
        mappings: Sequence[ProfileMapping] = DEFAULT_PROFILE_MAPPINGS,
    ):
        self.tree = tree
        self.hooks = hooks or ExtractionHooks()
        self.mappings = mappings

    # -- labels -------------------------------------------------------------

    def _accessible_name(self, node: Node) -> Optional[str]:
        aria = normalize_ws(node.attr("aria-label"))
        if aria:
            return aria
        labelled_by = node.attr("aria-labelledby")
        if labelled_by:
            parts = []
            for ref in labelled_by.split():
                target = self.tree.find_by_id(ref)
                if target is not None and target.text():
                    parts.append(target.text())
            if parts:
                return " ".join(parts)
        return None

    def _group_legend(self, node: Node) -> Optional[str]:
        fieldset = node.closest("fieldset")
        if fieldset is None:
            return None
        legend = fieldset.select_one("legend")
        if legend is not None and legend.text():
            return legend.text()
        return None

    def generic_label(self, node: Node) -> str:
        element_id = node.attr("id")
        if element_id:
            label = self.tree.find_label_for(element_id)
            if label is not None and label.text():
                return label.text()

        if native_type(node) == "radio":
            legend = self._group_legend(node)
            if legend:
                return legend

        parent_label = node.closest("label")
        if parent_label is not None:
            typed = node.attr("value") if native_type(node) not in {"checkbox", "radio"} else None
            stripped = _strip_value(parent_label.text(), typed)
            if stripped:
                return stripped

        for sib in node.previous_siblings():
            if sib.tag in {"input", "select", "textarea", "button"}:
                break
            sib_text = sib.text()
            if not sib_text:
                continue
            if len(sib_text) < _MAX_SIBLING_LABEL:
                return sib_text
            break

        accessible = self._accessible_name(node)
        if accessible:
            return accessible

        placeholder = normalize_ws(node.attr("placeholder"))
        if placeholder:
            return placeholder

        name = node.attr("name")
        if name and humanize(name):
            return humanize(name)

        return UNKNOWN_FIELD_LABEL

    def extract_label(self, node: Node) -> str:
        if self.hooks.label is not None:
            override = self.hooks.label(node)
            if override:
                return normalize_ws(override)
        return self.generic_label(node)

    # -- required / options / rules ------------------------------------------

    def is_required(self, node: Node, raw_label: str) -> bool:
        if node.has_attr("required") or node.attr("aria-required") == "true":
            return True
        if "required" in node.classes or node.select_one(".required") is not None:
            return True
        if self.hooks.required is not None and self.hooks.required(node):
            return True
        if raw_label != UNKNOWN_FIELD_LABEL and ("*" in raw_label or "required" in raw_label.lower()):
            return True
        return False

    def extract_options(self, node: Node, ftype: FieldType, scope: Optional[Node] = None) -> List[str]:
        if node.tag == "select":
            out = []
            for opt in node.select("option"):
                display = opt.text() or (opt.attr("value") or "")
                if display:
                    out.append(display)
            return out
        if ftype == FieldType.RADIO or native_type(node) == "radio":
            name = node.attr("name")
            if not name:
                return []
            holder = scope if scope is not None else self.tree.root
            out = []
            for radio in holder.select('input[type="radio"]'):
                if radio.attr("name") != name:
                    continue
                label = self._radio_option_label(radio)
                out.append(label if label else (radio.attr("value") or ""))
            return [o for o in out if o]
        return []

    def _radio_option_label(self, radio: Node) -> Optional[str]:
        element_id = radio.attr("id")
        if element_id:
            label = self.tree.find_label_for(element_id)
            if label is not None and label.text():
                return label.text()
        parent_label = radio.closest("label")
        if parent_label is not None and parent_label.text():
            return parent_label.text()
        return self._accessible_name(radio)

    def validation_rules(self, node: Node, ftype: FieldType, required: bool) -> List[ValidationRule]:
        rules: List[ValidationRule] = []
        if required:
            rules.append(ValidationRule(kind="required", message="This field is required"))
        if ftype == FieldType.EMAIL:
            rules.append(ValidationRule(kind="email", message="Please enter a valid email address"))
        elif ftype == FieldType.URL:
            rules.append(ValidationRule(kind="url", message="Please enter a valid URL"))
        elif ftype == FieldType.PHONE:
            rules.append(ValidationRule(kind="phone", message="Please enter a valid phone number"))
        for attr_name, kind, text in (
            ("minlength", "min_length", "Minimum length is {}"),
            ("maxlength", "max_length", "Maximum length is {}"),
        ):
            raw = node.attr(attr_name)
            if raw and raw.strip().isdigit():
                n = int(raw)
                rules.append(ValidationRule(kind=kind, param=n, message=text.format(n)))
        pattern = node.attr("pattern")
        if pattern:
            rules.append(ValidationRule(kind="pattern", param=pattern, message="Please match the required format"))
        return rules

    # -- entry points --------------------------------------------------------

    def classify(self, node: Node, index: int, scope: Optional[Node] = None) -> Optional[FormField]:
        if not is_classifiable(node):
            return None

        ftype = map_field_type(node)
        if self.hooks.field_type is not None:
            ftype = self.hooks.field_type(node, ftype)

        raw_label = self.extract_label(node)
        required = self.is_required(node, raw_label)
        label = _clean_label(raw_label) or UNKNOWN_FIELD_LABEL
        placeholder = normalize_ws(node.attr("placeholder")) or None

        selector = None
        if self.hooks.selector is not None:
            selector = self.hooks.selector(node)
        selector = selector or generic_selector(node)

        return FormField(
            id=element_key(node) or f"field_{index}",
            type=ftype,
            label=label,
            selector=selector,
            required=required,
            placeholder=placeholder,
            options=self.extract_options(node, ftype, scope),
            mapped_profile_field=map_profile_field(label, placeholder, self.mappings),
            validation_rules=self.validation_rules(node, ftype, required),
        )

    def classify_all(self, container: Node) -> List[FormField]:
        """Classify every control inside ``container`` in document order."""
        fields: List[FormField] = []
        seen_ids: set[str] = set()
        seen_radio_groups: set[str] = set()
        for index, node in enumerate(container.select(FIELD_DISCOVERY_SELECTOR)):
            if native_type(node) == "radio" and node.attr("name"):
                if node.attr("name") in seen_radio_groups:
                    continue
                seen_radio_groups.add(node.attr("name") or "")
            field = self.classify(node, index, scope=container)
            if field is None:
                continue
            if field.id in seen_ids:
                field = field.model_copy(update={"id": f"{field.id}_{index}"})
            seen_ids.add(field.id)
            fields.append(field)
        return fields


def supported_features(fields: Sequence[FormField]) -> List[AutofillFeature]:
    features: List[AutofillFeature] = []
    mapped = [f.mapped_profile_field or "" for f in fields]
    if any(m.startswith("personalInfo.") for m in mapped):
        features.append(AutofillFeature.BASIC_INFO)
    if any("workExperience" in m for m in mapped):
        features.append(AutofillFeature.WORK_EXPERIENCE)
    if any("education" in m for m in mapped):
        features.append(AutofillFeature.EDUCATION)
    if any(f.type == FieldType.FILE for f in fields):
        features.append(AutofillFeature.FILE_UPLOAD)
    if any(f.type == FieldType.TEXTAREA for f in fields):
        features.append(AutofillFeature.AI_CONTENT)
    if any("skill" in f.label.lower() or "experience" in f.label.lower() for f in fields):
        features.append(AutofillFeature.SKILLS)
    features.append(AutofillFeature.DEFAULT_ANSWERS)
    return features

from __future__ import annotations
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Literal, Optional, Tuple

from ..models import ChangeType, FormChangeEvent
from ..tracing import event
from ..tree import Node, is_hidden

if TYPE_CHECKING:
    from .monitor import MonitoredForm


STRUCTURAL_CHANGES = {ChangeType.FORM_ADDED, ChangeType.FIELD_ADDED, ChangeType.FIELD_REMOVED}

PatternType = Literal["field_value", "field_visibility", "form_structure", "validation_state"]

_PATTERN_TYPES: Dict[ChangeType, PatternType] = {
    ChangeType.FIELD_CHANGED: "field_value",
    ChangeType.FIELD_ADDED: "form_structure",
    ChangeType.FIELD_REMOVED: "form_structure",
    ChangeType.FORM_ADDED: "form_structure",
    ChangeType.FORM_REMOVED: "form_structure",
    ChangeType.VALIDATION_CHANGED: "validation_state",
}


@dataclass
class ChangePattern:
    type: PatternType
    change_type: ChangeType
    signature: str
    frequency: int
    last_seen: datetime
    confidence: float


def pattern_signature(change: FormChangeEvent) -> str:
    parts = [change.type.value]
    if change.field_id:
        parts.append(change.field_id)
    if change.new_value is not None:
        parts.append(type(change.new_value).__name__)
    return ":".join(parts)


def is_field_ready(node: Node) -> bool:
    return not (node.has_attr("disabled") or node.has_attr("readonly") or is_hidden(node))


class ChangeHistory:
    """
    Bounded per-form record of monitor change events, plus the repeating
    patterns seen in them.

    Usable directly as a change listener: ``monitor.add_change_listener(history.record)``.
    """

    def __init__(
        self,
        max_per_type: int = 100,
        pattern_threshold: int = 3,
        pattern_ttl: float = 300.0,
    ):
        self.max_per_type = max_per_type
        self.pattern_threshold = pattern_threshold
        self.pattern_ttl = pattern_ttl
        self._events: Dict[Tuple[str, ChangeType], Deque[FormChangeEvent]] = {}
        self._patterns: Dict[Tuple[str, ChangeType], List[ChangePattern]] = {}

    def record(self, change: FormChangeEvent) -> None:
        key = (change.form_id, change.type)
        if key not in self._events:
            self._events[key] = deque(maxlen=self.max_per_type)
        self._events[key].append(change)
        self._update_patterns(key, change)
        event("MONITOR", "TRACE", "history_recorded", form_id=change.form_id, type=change.type.value)

    def _update_patterns(self, key: Tuple[str, ChangeType], change: FormChangeEvent) -> None:
        patterns = self._patterns.setdefault(key, [])
        signature = pattern_signature(change)
        found = next((p for p in patterns if p.signature == signature), None)
        if found is None:
            patterns.append(
                ChangePattern(
                    type=_PATTERN_TYPES.get(change.type, "field_visibility"),
                    change_type=change.type,
                    signature=signature,
                    frequency=1,
                    last_seen=change.timestamp,
                    confidence=min(1 / self.pattern_threshold, 1.0),
                )
            )
        else:
            found.frequency += 1
            found.last_seen = max(found.last_seen, change.timestamp)
            found.confidence = min(found.frequency / self.pattern_threshold, 1.0)
        # one-off patterns expire; established ones are kept
        cutoff = change.timestamp - timedelta(seconds=self.pattern_ttl)
        self._patterns[key] = [p for p in patterns if p.last_seen >= cutoff or p.frequency >= self.pattern_threshold]

    def events(self, form_id: str) -> List[FormChangeEvent]:
        out: List[FormChangeEvent] = []
        for (fid, _), items in self._events.items():
            if fid == form_id:
                out.extend(items)
        return sorted(out, key=lambda e: e.timestamp)

    def recent(self, form_id: str, window: float, now: Optional[datetime] = None) -> List[FormChangeEvent]:
        cutoff = (now or datetime.now()) - timedelta(seconds=window)
        return [e for e in self.events(form_id) if e.timestamp >= cutoff]

    def change_stats(self, form_id: str) -> Dict[str, Any]:
        by_type: Counter = Counter()
        fields: Counter = Counter()
        total = 0
        last: Optional[datetime] = None
        interval_sum = 0.0
        interval_count = 0
        for (fid, kind), items in self._events.items():
            if fid != form_id:
                continue
            previous: Optional[datetime] = None
            for e in items:
                total += 1
                by_type[kind.value] += 1
                if e.field_id:
                    fields[e.field_id] += 1
                if last is None or e.timestamp > last:
                    last = e.timestamp
                if previous is not None:
                    interval_sum += (e.timestamp - previous).total_seconds()
                    interval_count += 1
                previous = e.timestamp
        return {
            "total_changes": total,
            "changes_by_type": dict(by_type),
            "average_interval": interval_sum / interval_count if interval_count else 0.0,
            "last_change": last,
            "most_active_field": fields.most_common(1)[0][0] if fields else None,
        }

    # -- patterns ------------------------------------------------------------

    def detect_patterns(self, form_id: str) -> List[ChangePattern]:
        """Patterns for the form, most confident first."""
        found = [p for (fid, _), items in self._patterns.items() if fid == form_id for p in items]
        return sorted(found, key=lambda p: p.confidence, reverse=True)

    def average_interval(self, form_id: str, change_type: ChangeType, default: float = 1.0) -> float:
        items = list(self._events.get((form_id, change_type), ()))
        if len(items) < 2:
            return default
        gaps = [(b.timestamp - a.timestamp).total_seconds() for a, b in zip(items, items[1:])]
        return sum(gaps) / len(gaps)

    def predict_next_change(self, form_id: str, min_confidence: float = 0.6) -> Optional[Dict[str, Any]]:
        patterns = self.detect_patterns(form_id)
        if not patterns or patterns[0].confidence < min_confidence:
            return None
        top = patterns[0]
        return {
            "type": top.type,
            "confidence": top.confidence,
            "time_estimate": self.average_interval(form_id, top.change_type),
        }

    def dominant_change_type(self, form_id: str) -> str:
        counts = self.change_stats(form_id)["changes_by_type"]
        if not counts:
            return "unknown"
        return max(counts.items(), key=lambda kv: kv[1])[0]

    def analyze_changes(self, form_id: str) -> Dict[str, Any]:
        stats = self.change_stats(form_id)
        prediction = self.predict_next_change(form_id)
        by_type = stats["changes_by_type"]
        structural = sum(by_type.get(t.value, 0) for t in STRUCTURAL_CHANGES | {ChangeType.FORM_REMOVED})

        recommendations: List[str] = []
        if stats["total_changes"] > 50:
            recommendations.append("Form shows high activity - consider delayed autofill")
        if structural > 5:
            recommendations.append("Form structure changes frequently - monitor for stability")
        if by_type.get(ChangeType.VALIDATION_CHANGED.value, 0) > 10:
            recommendations.append("Form has active validation - wait for validation to complete")
        if stats["total_changes"] > 1 and stats["average_interval"] < 0.5:
            recommendations.append("Rapid changes detected - increase autofill delay")

        return {
            "form_id": form_id,
            "change_type": self.dominant_change_type(form_id),
            "patterns": self.detect_patterns(form_id),
            "predictions": {
                "next_change": prediction["type"] if prediction else None,
                "time_to_next": prediction["time_estimate"] if prediction else None,
                "confidence": prediction["confidence"] if prediction else 0.0,
            },
            "recommendations": recommendations,
        }

    # -- readiness -----------------------------------------------------------

    def is_stable(self, form_id: str, window: float = 2.0, max_changes: int = 5, now: Optional[datetime] = None) -> bool:
        """False while the form is busy: too many recent changes or any recent structural change."""
        recent = self.recent(form_id, window, now)
        if len(recent) > max_changes:
            return False
        return not any(e.type in STRUCTURAL_CHANGES for e in recent)

    def is_ready_for_autofill(
        self,
        form: MonitoredForm,
        *,
        window: float = 2.0,
        max_changes: int = 5,
        min_ready_ratio: float = 0.8,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        A form can be filled once it is stable, its container is visible and
        at least ``min_ready_ratio`` of its fields are enabled, writable and visible.
        A form without fields is never ready.
        """
        if not self.is_stable(form.id, window, max_changes, now):
            event("MONITOR", "DEBUG", "autofill_not_ready", form_id=form.id, reason="unstable")
            return False
        if is_hidden(form.container):
            event("MONITOR", "DEBUG", "autofill_not_ready", form_id=form.id, reason="hidden")
            return False
        if not form.fields:
            return False
        ready = sum(1 for node in form.fields.values() if is_field_ready(node))
        if ready / len(form.fields) < min_ready_ratio:
            event("MONITOR", "DEBUG", "autofill_not_ready", form_id=form.id, reason="fields", ready=ready, total=len(form.fields))
            return False
        return True

    def autofill_timing(self, form_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Suggested delay in seconds before filling, from predicted and recent activity."""
        delay, reason, confidence = 0.5, "Default delay for form stability", 0.5
        prediction = self.predict_next_change(form_id)
        if prediction and prediction["type"] == "field_visibility":
            delay = min(prediction["time_estimate"] + 0.2, 2.0)
            reason, confidence = "Waiting for field visibility changes", prediction["confidence"]
        elif prediction and prediction["type"] == "form_structure":
            delay = min(prediction["time_estimate"] + 0.5, 3.0)
            reason, confidence = "Waiting for form structure changes", prediction["confidence"]
        if len(self.recent(form_id, 5.0, now)) > 10:
            delay = max(delay, 1.0)
            reason, confidence = "High change activity detected", max(confidence, 0.7)
        return {"delay": delay, "reason": reason, "confidence": confidence}

    # -- housekeeping --------------------------------------------------------

    def clear_history(self, form_id: str) -> None:
        for store in (self._events, self._patterns):
            for key in [k for k in store if k[0] == form_id]:
                del store[key]

    def clear(self) -> None:
        self._events.clear()
        self._patterns.clear()

    def stats(self) -> Dict[str, int]:
        return {
            "tracked_forms": len({fid for fid, _ in self._events}),
            "total_changes": sum(len(v) for v in self._events.values()),
        }

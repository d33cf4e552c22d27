import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add src to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from jobforms.models import ChangeType, FormChangeEvent
from jobforms.monitor import FormMonitor, ManualScheduler, SyntheticFeed
from jobforms.monitor.history import ChangeHistory, pattern_signature
from jobforms.tree import parse_html


T0 = datetime(2024, 5, 1, 12, 0, 0)


def _change(kind: ChangeType, seconds: float, field_id=None, form_id: str = "form-a") -> FormChangeEvent:
    return FormChangeEvent(type=kind, form_id=form_id, field_id=field_id, timestamp=T0 + timedelta(seconds=seconds))


def test_events_are_sorted_and_bounded():
    history = ChangeHistory(max_per_type=2)
    for i in range(3):
        history.record(_change(ChangeType.FIELD_CHANGED, i, "email"))
    history.record(_change(ChangeType.FORM_ADDED, -1))
    events = history.events("form-a")
    assert [e.type for e in events] == [ChangeType.FORM_ADDED, ChangeType.FIELD_CHANGED, ChangeType.FIELD_CHANGED]
    assert [e.timestamp for e in events][1:] == [T0 + timedelta(seconds=1), T0 + timedelta(seconds=2)]


def test_change_stats():
    history = ChangeHistory()
    history.record(_change(ChangeType.FIELD_CHANGED, 0, "email"))
    history.record(_change(ChangeType.FIELD_CHANGED, 1, "email"))
    history.record(_change(ChangeType.FIELD_CHANGED, 3, "phone"))
    history.record(_change(ChangeType.FIELD_CHANGED, 0, "email", form_id="form-b"))

    stats = history.change_stats("form-a")
    assert stats["total_changes"] == 3
    assert stats["changes_by_type"] == {"field_changed": 3}
    assert stats["average_interval"] == 1.5
    assert stats["last_change"] == T0 + timedelta(seconds=3)
    assert stats["most_active_field"] == "email"

    assert history.change_stats("form-z")["total_changes"] == 0


def test_is_stable():
    history = ChangeHistory()
    now = T0 + timedelta(seconds=10)
    for i in range(3):
        history.record(_change(ChangeType.FIELD_CHANGED, 9 + i * 0.1, "email"))
    assert history.is_stable("form-a", now=now)

    history.record(_change(ChangeType.FIELD_ADDED, 9.5, "phone"))
    assert not history.is_stable("form-a", now=now)
    # the structural change falls outside a shorter window
    assert history.is_stable("form-a", window=0.4, now=now)

    busy = ChangeHistory()
    for i in range(6):
        busy.record(_change(ChangeType.FIELD_CHANGED, 9 + i * 0.1, "email"))
    assert not busy.is_stable("form-a", now=now)


def test_clear_history_and_stats():
    history = ChangeHistory()
    history.record(_change(ChangeType.FORM_ADDED, 0))
    history.record(_change(ChangeType.FORM_ADDED, 0, form_id="form-b"))
    assert history.stats() == {"tracked_forms": 2, "total_changes": 2}
    history.clear_history("form-a")
    assert history.events("form-a") == []
    assert history.stats() == {"tracked_forms": 1, "total_changes": 1}
    history.clear()
    assert history.stats() == {"tracked_forms": 0, "total_changes": 0}


def test_repeated_changes_become_confident_patterns():
    history = ChangeHistory()
    for i in range(3):
        history.record(FormChangeEvent(type=ChangeType.FIELD_CHANGED, form_id="form-a", field_id="email", new_value="a" * i, timestamp=T0 + timedelta(seconds=i * 2)))
    history.record(_change(ChangeType.FIELD_ADDED, 7, "phone"))

    patterns = history.detect_patterns("form-a")
    assert [p.signature for p in patterns] == ["field_changed:email:str", "field_added:phone"]
    assert patterns[0].type == "field_value"
    assert patterns[0].frequency == 3
    assert patterns[0].confidence == 1.0
    assert patterns[1].type == "form_structure"

    prediction = history.predict_next_change("form-a")
    assert prediction == {"type": "field_value", "confidence": 1.0, "time_estimate": 2.0}
    assert history.predict_next_change("form-b") is None


def test_one_off_patterns_expire():
    history = ChangeHistory(pattern_ttl=60)
    history.record(_change(ChangeType.FIELD_CHANGED, 0, "email"))
    history.record(_change(ChangeType.FIELD_CHANGED, 120, "phone"))
    assert [p.signature for p in history.detect_patterns("form-a")] == ["field_changed:phone"]


def test_pattern_signature_includes_value_type():
    change = FormChangeEvent(type=ChangeType.FIELD_CHANGED, form_id="f", field_id="terms", new_value=True)
    assert pattern_signature(change) == "field_changed:terms:bool"


def test_analyze_changes_reports_dominant_type():
    history = ChangeHistory()
    assert history.analyze_changes("form-a")["change_type"] == "unknown"
    for i in range(4):
        history.record(_change(ChangeType.VALIDATION_CHANGED, i * 0.1))
    history.record(_change(ChangeType.FIELD_CHANGED, 1, "email"))

    analysis = history.analyze_changes("form-a")
    assert analysis["change_type"] == "validation_changed"
    assert analysis["predictions"]["next_change"] == "validation_state"
    assert "Rapid changes detected - increase autofill delay" in analysis["recommendations"]


def test_clear_history_drops_patterns():
    history = ChangeHistory()
    history.record(_change(ChangeType.FIELD_CHANGED, 0, "email"))
    history.clear_history("form-a")
    assert history.detect_patterns("form-a") == []


READY_HTML = """
<html><body>
  <form id="apply">
    <input id="a" name="a">
    <input id="b" name="b">
    <input id="c" name="c">
    <input id="d" name="d" disabled>
    <input id="e" name="e">
  </form>
</body></html>
"""


def _monitored(html: str = READY_HTML):
    tree = parse_html(html)
    monitor = FormMonitor(tree, SyntheticFeed(), ManualScheduler())
    form_id = monitor.add_form(tree.find_by_id("apply"))
    return tree, monitor.get_form(form_id)


def test_ready_for_autofill_with_enough_ready_fields():
    _, form = _monitored()
    assert len(form.fields) == 5
    assert ChangeHistory().is_ready_for_autofill(form, now=T0)


def test_not_ready_when_too_few_fields_are_usable():
    tree, form = _monitored()
    tree.find_by_id("e").set_attr("readonly", "")
    assert not ChangeHistory().is_ready_for_autofill(form, now=T0)


def test_not_ready_when_container_is_hidden():
    tree, form = _monitored()
    tree.find_by_id("apply").set_attr("style", "display: none")
    assert not ChangeHistory().is_ready_for_autofill(form, now=T0)


def test_not_ready_right_after_structural_change():
    _, form = _monitored()
    history = ChangeHistory()
    history.record(FormChangeEvent(type=ChangeType.FIELD_ADDED, form_id=form.id, field_id="e", timestamp=T0))
    assert not history.is_ready_for_autofill(form, now=T0 + timedelta(seconds=1))
    assert history.is_ready_for_autofill(form, now=T0 + timedelta(seconds=3))


def test_autofill_timing_backs_off_under_activity():
    history = ChangeHistory()
    assert history.autofill_timing("form-a", now=T0)["delay"] == 0.5
    for i in range(11):
        history.record(_change(ChangeType.FIELD_CHANGED, i * 0.1, f"f{i}"))
    timing = history.autofill_timing("form-a", now=T0 + timedelta(seconds=2))
    assert timing["delay"] == 1.0
    assert timing["reason"] == "High change activity detected"

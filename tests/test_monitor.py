import sys
from pathlib import Path

import pytest

# Add src to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from jobforms.models import ChangeType
from jobforms.monitor import FOCUS_ATTR, MONITOR_ID_ATTR, FormMonitor, ManualScheduler, SyntheticFeed
from jobforms.tree import parse_html


APPLY_HTML = """
<html><body>
  <form id="apply">
    <label for="first_name">First name</label>
    <input id="first_name" name="first_name" required>
    <label for="email">Email</label>
    <input id="email" name="email" type="email" required value="ada@example.com" aria-describedby="email-error">
    <span id="email-error">Email already registered</span>
    <label for="phone">Phone</label>
    <input id="phone" name="phone" type="tel">
  </form>
</body></html>
"""

WIZARD_HTML = """
<html><body>
  <form id="wizard">
    <div class="form-step active" data-step="1">
      <input id="first_name" name="first_name" required>
      <input id="last_name" name="last_name" required>
    </div>
    <div class="form-step" data-step="2" hidden>
      <input id="email" name="email" type="email" required>
      <input id="phone" name="phone" type="tel">
    </div>
    <button type="button" id="next">Continue</button>
  </form>
</body></html>
"""


def _setup(html: str):
    tree = parse_html(html)
    feed = SyntheticFeed()
    scheduler = ManualScheduler()
    monitor = FormMonitor(tree, feed, scheduler)
    changes = []
    monitor.add_change_listener(changes.append)
    monitor.start_monitoring()
    return tree, feed, scheduler, monitor, changes


def _types(changes):
    return [c.type for c in changes]


def test_initial_state_for_partially_filled_form():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    assert _types(changes) == [ChangeType.FORM_ADDED]
    state = monitor.get_validation_state("form-apply")
    assert state.required_fields == ["first_name", "email"]
    assert state.completed_fields == ["email"]
    assert state.errors == {}
    assert state.is_valid is False
    assert tree.find_by_id("apply").attr(MONITOR_ID_ATTR) == "form-apply"


def test_typing_completes_form_with_one_validation_change():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    validations = []
    monitor.add_validation_listener(validations.append)

    feed.type_text(tree.find_by_id("first_name"), "Ada")
    assert ChangeType.FIELD_CHANGED not in _types(changes)
    scheduler.advance(0.3)

    assert _types(changes) == [ChangeType.FORM_ADDED, ChangeType.FIELD_CHANGED, ChangeType.VALIDATION_CHANGED]
    field_change = changes[1]
    assert (field_change.field_id, field_change.old_value, field_change.new_value) == ("first_name", "", "Ada")
    assert len(validations) == 1
    assert validations[0].is_valid is True
    assert validations[0].completed_fields == ["first_name", "email"]


def test_burst_of_input_is_debounced():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    phone = tree.find_by_id("phone")
    for value in ("5", "55", "555"):
        feed.type_text(phone, value)
        scheduler.advance(0.1)
    assert ChangeType.FIELD_CHANGED not in _types(changes)
    scheduler.advance(1.0)

    field_changes = [c for c in changes if c.type == ChangeType.FIELD_CHANGED]
    assert len(field_changes) == 1
    assert field_changes[0].new_value == "555"
    assert monitor.get_form("form-apply").change_count == 1


def test_input_and_change_are_debounced_separately():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    phone = tree.find_by_id("phone")
    feed.type_text(phone, "555")
    feed.type_text(phone, "555", kind="change")
    scheduler.advance(0.3)
    assert len([c for c in changes if c.type == ChangeType.FIELD_CHANGED]) == 2


def test_multi_step_navigation_rescans_fields():
    tree, feed, scheduler, monitor, changes = _setup(WIZARD_HTML)
    form = monitor.get_form("form-wizard")
    assert sorted(form.fields) == ["first_name", "last_name"]
    assert form.is_multi_step
    assert (form.current_step, form.total_steps) == (1, 2)

    step_one, step_two = tree.select(".form-step")
    step_one.set_attr("class", "form-step")
    step_one.set_attr("hidden", "")
    step_two.set_attr("class", "form-step active")
    step_two.remove_attr("hidden")
    feed.click(tree.find_by_id("next"))
    scheduler.advance(0.5)

    removed = {c.field_id for c in changes if c.type == ChangeType.FIELD_REMOVED}
    added = {c.field_id for c in changes if c.type == ChangeType.FIELD_ADDED}
    assert removed == {"first_name", "last_name"}
    assert added == {"email", "phone"}
    assert form.current_step == 2
    state = monitor.get_validation_state("form-wizard")
    assert state.required_fields == ["email"]
    assert state.errors == {}


def test_blur_touches_field_and_reports_errors():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    first = tree.find_by_id("first_name")
    feed.focus(first)
    assert first.attr(FOCUS_ATTR) == "true"
    feed.blur(first)
    assert not first.has_attr(FOCUS_ATTR)
    state = monitor.get_validation_state("form-apply")
    assert state.errors == {"first_name": ["This field is required"]}
    assert _types(changes)[-1] == ChangeType.VALIDATION_CHANGED


def test_submit_validates_every_field():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    tree.find_by_id("email").set_attr("value", "not-an-email")
    feed.submit(tree.find_by_id("apply"))
    state = monitor.get_validation_state("form-apply")
    assert state.errors["first_name"] == ["This field is required"]
    assert state.errors["email"] == ["Please enter a valid value"]
    assert "phone" not in state.errors
    assert not state.is_valid


def test_aria_invalid_uses_described_message():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    feed.set_attribute(tree.find_by_id("email"), "aria-invalid", "true")
    state = monitor.get_validation_state("form-apply")
    assert state.errors == {"email": ["Email already registered"]}


def test_disabled_field_is_not_required():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    feed.set_attribute(tree.find_by_id("first_name"), "disabled", "disabled")

    flip = [c for c in changes if c.type == ChangeType.FIELD_CHANGED][0]
    assert (flip.field_id, flip.old_value, flip.new_value) == ("first_name", None, "disabled")
    state = monitor.get_validation_state("form-apply")
    assert state.required_fields == ["email"]
    assert state.is_valid


@pytest.mark.parametrize(
    "body, expected",
    [
        ('<input name="notes">', True),
        ('<input name="a" required value="x">', True),
        ('<input name="a" required>', False),
        ('<input name="a" required value="x"><input name="b" required value="y"><input name="c" required>', False),
        ('<input name="a" required value="x"><input name="b" required value="y">', True),
    ],
)
def test_is_valid_follows_required_fields(body, expected):
    tree, feed, scheduler, monitor, changes = _setup(f"<html><body><form id='f'>{body}</form></body></html>")
    assert monitor.get_validation_state("form-f").is_valid is expected


def test_checkbox_and_radio_completion():
    html = """
    <html><body><form id="consent">
      <input type="checkbox" name="terms" required>
      <input type="radio" name="relocate" value="yes" required>
      <input type="radio" name="relocate" value="no">
    </form></body></html>
    """
    tree, feed, scheduler, monitor, changes = _setup(html)
    form = monitor.get_form("form-consent")
    assert sorted(form.fields) == ["relocate", "terms"]
    assert monitor.get_validation_state("form-consent").completed_fields == []

    feed.set_checked(tree.select_one('input[name="terms"]'))
    feed.set_checked(tree.select('input[name="relocate"]')[1])
    scheduler.advance(0.3)

    relocate = [c for c in changes if c.field_id == "relocate"][0]
    assert relocate.new_value == "no"
    state = monitor.get_validation_state("form-consent")
    assert sorted(state.completed_fields) == ["relocate", "terms"]
    assert state.is_valid


def test_hidden_fields_are_skipped_but_styled_file_inputs_kept():
    html = """
    <html><body><form id="docs">
      <input name="secret" style="display:none">
      <div class="upload"><input type="file" name="resume" style="display: none"></div>
      <div class="hidden"><input name="later"></div>
      <input type="text" placeholder="Your city">
    </form></body></html>
    """
    tree, feed, scheduler, monitor, changes = _setup(html)
    fields = monitor.get_form("form-docs").fields
    assert set(fields) == {"resume", "input-text-Your-city-Your-city-3"}


def test_add_form_is_idempotent_and_skips_empty_containers():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    container = tree.find_by_id("apply")
    assert monitor.add_form(container) == "form-apply"
    assert monitor.add_form(container, "other-id") == "form-apply"
    assert _types(changes) == [ChangeType.FORM_ADDED]

    empty = parse_html("<div><p>nothing here</p></div>").select_one("div")
    assert monitor.add_form(empty) is None


def test_explicit_and_generated_form_ids():
    tree = parse_html("<html><body><form><input name='a'></form><form name='b'><input name='c'></form></body></html>")
    monitor = FormMonitor(tree, SyntheticFeed(), ManualScheduler())
    first, second = tree.select("form")
    assert monitor.add_form(first) == "form-form-0"
    assert monitor.add_form(second, "custom_form_x_1") == "custom_form_x_1"


def test_inserted_field_triggers_rescan():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    feed.type_text(tree.find_by_id("first_name"), "Ada")
    scheduler.advance(0.3)
    assert monitor.get_validation_state("form-apply").is_valid

    feed.insert_html(tree.find_by_id("apply"), '<input id="portfolio" name="portfolio" type="url" required>')
    scheduler.advance(0.5)
    assert _types(changes)[-2:] == [ChangeType.FIELD_ADDED, ChangeType.VALIDATION_CHANGED]
    assert changes[-2].field_id == "portfolio"
    assert not monitor.get_validation_state("form-apply").is_valid


def test_inserted_and_removed_forms():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    body = tree.body
    feed.insert_html(body, '<form id="late"><input name="city"></form>')
    assert monitor.get_form("form-late") is not None

    feed.remove(tree.find_by_id("apply"))
    assert monitor.get_form("form-apply") is None
    assert _types(changes) == [ChangeType.FORM_ADDED, ChangeType.FORM_ADDED, ChangeType.FORM_REMOVED]


def test_stop_monitoring_cancels_pending_work():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    feed.type_text(tree.find_by_id("phone"), "555")
    assert monitor.debounce.pending == 1
    monitor.stop_monitoring()
    assert monitor.debounce.pending == 0
    assert feed.subscriber_count == 0
    scheduler.advance(1.0)
    assert ChangeType.FIELD_CHANGED not in _types(changes)


def test_destroy_clears_registry_and_markers():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    monitor.destroy()
    assert monitor.get_all_forms() == []
    assert not tree.find_by_id("apply").has_attr(MONITOR_ID_ATTR)
    assert monitor.get_stats().is_monitoring is False


def test_remove_form():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    assert monitor.remove_form("form-apply")
    assert not monitor.remove_form("form-apply")
    assert _types(changes)[-1] == ChangeType.FORM_REMOVED


def test_failing_listener_does_not_break_others():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)

    def broken(change):
        raise RuntimeError("listener bug")

    monitor.add_change_listener(broken)
    monitor.add_change_listener(changes.append)  # already registered, ignored
    feed.type_text(tree.find_by_id("phone"), "555")
    scheduler.advance(0.3)
    assert ChangeType.FIELD_CHANGED in _types(changes)


def test_update_validation_state_derives_is_valid():
    tree, feed, scheduler, monitor, changes = _setup(APPLY_HTML)
    with pytest.raises(TypeError):
        monitor.update_validation_state("form-apply", is_valid=True)

    state = monitor.update_validation_state(
        "form-apply", completed_fields=["first_name", "email"], errors={"phone": ["Bad number"]}
    )
    assert state.is_valid is False
    state = monitor.update_validation_state("form-apply", errors={})
    assert state.is_valid is True
    assert monitor.update_validation_state("missing") is None


def test_stats():
    tree, feed, scheduler, monitor, changes = _setup(WIZARD_HTML)
    stats = monitor.get_stats()
    assert stats.is_monitoring
    assert stats.forms_count == 1
    assert stats.total_fields == 2
    assert stats.valid_forms == 0
    assert stats.multi_step_forms == 1

import asyncio
import sys
from pathlib import Path

import pytest

# Add src to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from jobforms.monitor import FormMonitor, SyntheticFeed
from jobforms.monitor.debounce import AsyncioScheduler, DebounceRegistry, ManualScheduler
from jobforms.tree import parse_html


def test_manual_scheduler_runs_due_callbacks_in_order():
    scheduler = ManualScheduler()
    calls = []
    scheduler.call_later(0.5, lambda: calls.append("late"))
    scheduler.call_later(0.1, lambda: calls.append("early"))
    assert scheduler.advance(0.2) == 1
    assert calls == ["early"]
    assert scheduler.advance(1.0) == 1
    assert calls == ["early", "late"]
    assert abs(scheduler.now - 1.2) < 1e-9


def test_cancelled_handles_do_not_run():
    scheduler = ManualScheduler()
    calls = []
    handle = scheduler.call_later(0.1, lambda: calls.append(1))
    handle.cancel()
    assert scheduler.pending == 0
    assert scheduler.advance(1.0) == 0
    assert calls == []


def test_registry_replaces_pending_timer():
    scheduler = ManualScheduler()
    registry = DebounceRegistry(scheduler)
    calls = []
    key = ("form-a", "email", "input")
    registry.schedule(key, 0.3, lambda: calls.append("first"))
    scheduler.advance(0.2)
    registry.schedule(key, 0.3, lambda: calls.append("second"))
    scheduler.advance(0.2)
    assert calls == []
    assert key in registry
    scheduler.advance(0.2)
    assert calls == ["second"]
    assert key not in registry
    assert registry.pending == 0


def test_registry_cancel_form_and_clear():
    scheduler = ManualScheduler()
    registry = DebounceRegistry(scheduler)
    calls = []
    registry.schedule(("a", "x", "input"), 0.3, lambda: calls.append("a.x"))
    registry.schedule(("a", "y", "change"), 0.3, lambda: calls.append("a.y"))
    registry.schedule(("b", "x", "input"), 0.3, lambda: calls.append("b.x"))
    assert registry.cancel_form("a") == 2
    assert registry.pending == 1
    assert registry.cancel(("missing", "x", "input")) is False
    registry.clear()
    scheduler.advance(1.0)
    assert calls == []


def test_asyncio_scheduler_fires_on_running_loop():
    calls = []

    async def run():
        registry = DebounceRegistry(AsyncioScheduler())
        registry.schedule(("f", "x", "input"), 0.01, lambda: calls.append("fired"))
        registry.schedule(("f", "x", "input"), 0.01, lambda: calls.append("replaced"))
        await asyncio.sleep(0.05)
        return registry.pending

    assert asyncio.run(run()) == 0
    assert calls == ["replaced"]


def test_asyncio_scheduler_needs_a_loop_up_front():
    with pytest.raises(RuntimeError):
        AsyncioScheduler()

    loop = asyncio.new_event_loop()
    try:
        calls = []
        scheduler = AsyncioScheduler(loop)
        scheduler.call_later(0.0, lambda: calls.append("ran"))
        loop.run_until_complete(asyncio.sleep(0.01))
        assert calls == ["ran"]
    finally:
        loop.close()


def test_monitor_without_scheduler_outside_loop_fails_at_construction():
    tree = parse_html("<form id='f'><input name='a'></form>")
    with pytest.raises(RuntimeError):
        FormMonitor(tree, SyntheticFeed())

    async def build():
        return FormMonitor(tree, SyntheticFeed())

    monitor = asyncio.run(build())
    assert monitor.debounce.pending == 0

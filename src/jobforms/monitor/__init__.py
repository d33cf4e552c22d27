from __future__ import annotations

# Public exports for the monitor package
from .debounce import AsyncioScheduler, DebounceRegistry, ManualScheduler, Scheduler
from .feed import ChangeFeed, InteractionEvent, MutationRecord, Subscription, SyntheticFeed
from .history import ChangeHistory
from .monitor import FOCUS_ATTR, MONITOR_ID_ATTR, FormMonitor, MonitoredForm

__all__ = [
    "AsyncioScheduler",
    "ChangeFeed",
    "ChangeHistory",
    "DebounceRegistry",
    "FOCUS_ATTR",
    "FormMonitor",
    "InteractionEvent",
    "MONITOR_ID_ATTR",
    "ManualScheduler",
    "MonitoredForm",
    "MutationRecord",
    "Scheduler",
    "Subscription",
    "SyntheticFeed",
]

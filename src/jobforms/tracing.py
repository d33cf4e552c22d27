from __future__ import annotations
import json
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, IO

from eliot import FileDestination, add_destinations, remove_destination, start_action as _eliot_start_action, log_message as _eliot_log_message


# Logging levels (simple numeric ordering)
LEVELS: Dict[str, int] = {"TRACE": 5, "DEBUG": 10, "INFO": 20}


@dataclass
class TraceConfig:
    run_id: str
    log_path: Path
    min_level: int
    enabled: bool = True
    common_fields: Dict[str, Any] | None = None


_CONFIG: Optional[TraceConfig] = None
_FILE: Optional[IO[bytes]] = None
_DESTINATION: Optional[FileDestination] = None


def _now_ts() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S")


def init_tracing(*, run_name: str, log_path: Path, min_level: str = "INFO", common_fields: Dict[str, Any] | None = None) -> TraceConfig:
    """
    Initialize Eliot to write JSONL to log_path and set global config.
    A previous trace file, if any, is closed first.
    """
    global _CONFIG, _FILE, _DESTINATION
    shutdown_tracing()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    # FileDestination wants a binary file-like
    _FILE = open(log_path, "ab")
    _DESTINATION = FileDestination(file=_FILE)
    add_destinations(_DESTINATION)
    cfg = TraceConfig(
        run_id=f"{run_name}-{int(time.time())}",
        log_path=log_path,
        min_level=LEVELS.get(min_level.upper(), LEVELS["INFO"]),
        enabled=True,
        common_fields=common_fields or {},
    )
    _CONFIG = cfg
    event("RUN", "INFO", "trace_initialized", run_name=run_name, log_path=str(log_path))
    return cfg


def shutdown_tracing() -> None:
    """Stop emitting events, detach the Eliot destination and close the JSONL file."""
    global _CONFIG, _FILE, _DESTINATION
    if _CONFIG:
        _CONFIG.enabled = False
    _CONFIG = None
    if _DESTINATION is not None:
        remove_destination(_DESTINATION)
        _DESTINATION = None
    if _FILE is not None:
        _FILE.flush()
        _FILE.close()
        _FILE = None


def tracing_enabled() -> bool:
    return bool(_CONFIG and _CONFIG.enabled)


def _should(level: str) -> bool:
    if not _CONFIG or not _CONFIG.enabled:
        return False
    return LEVELS.get(level.upper(), LEVELS["INFO"]) >= _CONFIG.min_level


def event(category: str, level: str, message_type: str, /, **fields: Any) -> None:
    if not _should(level):
        return
    body: Dict[str, Any] = {
        "category": category,
        "level": level,
        "ts": _now_ts(),
        "message_type": message_type,
    }
    if _CONFIG and _CONFIG.common_fields:
        body.update(_CONFIG.common_fields)
        body["run_id"] = _CONFIG.run_id
    body.update(fields)
    _eliot_log_message(**body)


def json_blob(category: str, level: str, name: str, payload: Any) -> None:
    if not _should(level):
        return
    try:
        pretty = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        pretty = str(payload)
    event(category, level, "json", name=name, text=pretty)


def text(category: str, level: str, name: str, text_value: str) -> None:
    if not _should(level):
        return
    event(category, level, "text", name=name, text=text_value)


@contextmanager
def action(action_type: str, *, category: str, **fields: Any):
    extra: Dict[str, Any] = {"category": category}
    if _CONFIG and _CONFIG.common_fields:
        extra.update(_CONFIG.common_fields)
        extra["run_id"] = _CONFIG.run_id
    extra.update(fields)
    with _eliot_start_action(action_type=action_type, **extra):
        yield

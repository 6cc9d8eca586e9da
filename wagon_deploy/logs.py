from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from typing import Any

_quiet = False


def set_quiet(value: bool = True) -> None:
    global _quiet
    _quiet = bool(value)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_event(event: str, **fields: Any) -> None:
    if _quiet:
        return
    log: dict[str, Any] = {"event": event, "ts": _now_iso()}
    log.update(fields)
    sys.stderr.write(json.dumps(log, separators=(",", ":"), sort_keys=True, default=str) + "\n")

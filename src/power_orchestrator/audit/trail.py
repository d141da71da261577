from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class JsonlAuditTrail:
    """
    Append only JSON line record of audit events.

    Each event becomes one JSON object per line with sorted keys. ts_unix is
    taken from at, the moment the event was emitted, so the trail and the text
    log agree on when things happened. Without at the write time is used.

    The file is opened per event so every line is on disk when log returns.
    """

    path: Path

    def log(self, event: dict[str, Any], *, at: datetime | None = None) -> None:
        stamp = at if at is not None else datetime.now(timezone.utc)
        payload = dict(event)
        payload["ts_unix"] = int(stamp.timestamp())
        line = json.dumps(payload, sort_keys=True)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

from __future__ import annotations

import sys
import uuid
from datetime import datetime, timezone


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def iso_from_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def short_id() -> str:
    return uuid.uuid4().hex[:8]


def preview(text: str, limit: int = 72) -> str:
    first = ""
    for line in text.splitlines():
        if line.strip():
            first = line.strip()
            break
    if len(first) > limit:
        return first[: limit - 3] + "..."
    return first


def eprint(*parts: object) -> None:
    print(*parts, file=sys.stderr)

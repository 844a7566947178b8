"""JSON formatter — structured output to stdout."""
from __future__ import annotations

import json
import sys
from datetime import datetime
from typing import IO, Iterable


def _default_serializer(obj):
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


def format_json(data, out: IO[str] | None = None) -> None:
    """Write canonical data as indented JSON."""
    out = out or sys.stdout
    json.dump(data, out, indent=2, ensure_ascii=False, default=_default_serializer)
    out.write("\n")


def format_jsonl(records: Iterable[dict], out: IO[str] | None = None) -> None:
    """Write one compact JSON object per line."""
    out = out or sys.stdout
    for rec in records:
        out.write(json.dumps(rec, ensure_ascii=False, default=_default_serializer))
        out.write("\n")

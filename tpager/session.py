"""Canonical transcript model shared by parsers, renderers and the pager."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, NamedTuple, Union

logger = logging.getLogger(__name__)

TURN_KINDS = (
    "user.message",
    "assistant.message",
    "assistant.thinking",
    "tool.execution_start",
    "tool.result",
)

NATIVE = "native"
ALTERNATE = "alternate"


# ── Errors ────────────────────────────────────────────────────────────

class TranscriptError(Exception):
    """Base class for problems loading a transcript."""


class UnrecognizedFormatError(TranscriptError):
    def __init__(self, path: Path | str):
        self.path = Path(path)
        super().__init__(f"Unrecognized transcript format: {self.path.name}")


# ── JSONL helpers ─────────────────────────────────────────────────────

def decode_line(line: str) -> dict | None:
    """Decode one JSON-lines record; blank or malformed lines give None."""
    line = line.strip()
    if not line:
        return None
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def iter_jsonl(path: Path) -> Iterator[dict]:
    """Yield parsed records from a JSONL file, skipping bad lines."""
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            rec = decode_line(line)
            if rec is not None:
                yield rec


def parse_ts(value: Any) -> datetime | None:
    """ISO-8601 string or unix milliseconds to an aware datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def get_str(obj: Any, key: str) -> str:
    if isinstance(obj, dict):
        v = obj.get(key)
        if isinstance(v, str):
            return v
    return ""


def get_num(obj: Any, key: str) -> float:
    if isinstance(obj, dict):
        v = obj.get(key)
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return v
    return 0


def content_string(value: Any) -> str:
    """Best-effort text from a string, {content: str}, or a block list."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("content"), str):
        return value["content"]
    if isinstance(value, list):
        for item in value:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                return item["text"]
            if isinstance(item, str):
                return item
    if value is None:
        return ""
    return json.dumps(value, ensure_ascii=False)


def keep_last(items: list, n: int | None) -> list:
    """Last *n* items in order; None keeps everything."""
    if n is None or n >= len(items):
        return items
    if n <= 0:
        return []
    return items[len(items) - n:]


# ── Session logs ──────────────────────────────────────────────────────

class Event:
    """One decoded log record."""

    __slots__ = ("kind", "timestamp", "raw")

    def __init__(self, kind: str, timestamp: datetime | None, raw: dict):
        self.kind = kind
        self.timestamp = timestamp
        self.raw = raw

    @classmethod
    def from_raw(cls, raw: dict) -> Event:
        return cls(get_str(raw, "type"), parse_ts(raw.get("timestamp")), raw)


class Turn:
    """A displayable unit; all dialects share these kinds and data shapes."""

    __slots__ = ("kind", "data", "timestamp")

    def __init__(self, kind: str, data: dict, timestamp: datetime | None = None):
        self.kind = kind
        self.data = data
        self.timestamp = timestamp

    def __repr__(self) -> str:
        return f"Turn({self.kind!r}, {self.data!r})"

    @property
    def content(self) -> str:
        c = self.data.get("content")
        return c if isinstance(c, str) else ""

    @property
    def tool_name(self) -> str:
        return get_str(self.data, "toolName")

    @property
    def result(self) -> dict:
        r = self.data.get("result")
        return r if isinstance(r, dict) else {}

    @property
    def is_error(self) -> bool:
        return self.kind == "tool.result" and get_str(self.result, "status") == "error"


class SessionLog:
    __slots__ = ("dialect", "path", "events", "turns", "session_id", "branch",
                 "version", "cwd", "start_time", "end_time", "offset")

    def __init__(self, dialect: str, path: Path | None = None,
                 events: list[Event] | None = None, turns: list[Turn] | None = None,
                 session_id: str = "", branch: str = "", version: str = "",
                 cwd: str = "", start_time: datetime | None = None,
                 end_time: datetime | None = None, offset: int = 0):
        self.dialect = dialect
        self.path = path
        self.events = events if events is not None else []
        self.turns = turns if turns is not None else []
        self.session_id = session_id
        self.branch = branch
        self.version = version
        self.cwd = cwd
        self.start_time = start_time
        self.end_time = end_time
        # Bytes of the source file consumed so far (live tail resumes here)
        self.offset = offset

    @property
    def event_count(self) -> int:
        return len(self.events)

    def observe_time(self, ts: datetime | None) -> None:
        """Widen the start/end window to include *ts*."""
        if ts is None:
            return
        if self.start_time is None or ts < self.start_time:
            self.start_time = ts
        if self.end_time is None or ts > self.end_time:
            self.end_time = ts

    @property
    def duration(self) -> float:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0


# ── Evaluation logs ───────────────────────────────────────────────────

class ToolEvent(NamedTuple):
    name: str
    call_id: str
    duration_ms: float


class EvalCase:
    __slots__ = ("name", "prompt", "passed", "duration_ms", "tool_call_count",
                 "tools_used", "response_length", "feedback", "error",
                 "message_parts", "tool_events", "pending_tools")

    def __init__(self, name: str = "", prompt: str = ""):
        self.name = name
        self.prompt = prompt
        self.passed: bool | None = None
        self.duration_ms = 0.0
        self.tool_call_count = 0
        self.tools_used: list[str] = []
        self.response_length = 0
        self.feedback = ""
        self.error: str | None = None
        self.message_parts: list[str] = []
        self.tool_events: list[ToolEvent] = []
        self.pending_tools: dict[str, datetime] = {}

    @property
    def message(self) -> str:
        return "".join(self.message_parts)


class EvalSuite:
    __slots__ = ("suite", "description", "case_count", "cases", "total_passed",
                 "total_failed", "total_skipped", "total_duration_ms",
                 "total_tool_calls", "current_case")

    def __init__(self):
        self.suite = ""
        self.description = ""
        self.case_count = 0
        self.cases: list[EvalCase] = []
        self.total_passed = 0
        self.total_failed = 0
        self.total_skipped = 0
        self.total_duration_ms = 0.0
        self.total_tool_calls = 0
        self.current_case: str | None = None


# ── Evaluation outcome documents ──────────────────────────────────────

class Validation(NamedTuple):
    name: str
    score: float
    passed: bool
    feedback: str


class Outcome:
    __slots__ = ("items", "task_name", "task_id", "status", "prompt",
                 "final_output", "duration_ms", "total_turns", "tool_call_count",
                 "tokens_in", "tokens_out", "validations", "model_id",
                 "aggregate_score", "tools_used")

    def __init__(self, items: list | None = None, task_name: str = "",
                 task_id: str = "", status: str = "", prompt: str = "",
                 final_output: str = "", duration_ms: float = 0,
                 total_turns: int = 0, tool_call_count: int = 0,
                 tokens_in: int = 0, tokens_out: int = 0,
                 validations: list[Validation] | None = None,
                 model_id: str = "", aggregate_score: float = 0,
                 tools_used: list[str] | None = None):
        self.items = items if items is not None else []
        self.task_name = task_name
        self.task_id = task_id
        self.status = status
        self.prompt = prompt
        self.final_output = final_output
        self.duration_ms = duration_ms
        self.total_turns = total_turns
        self.tool_call_count = tool_call_count
        self.tokens_in = tokens_in
        self.tokens_out = tokens_out
        self.validations = validations if validations is not None else []
        self.model_id = model_id
        self.aggregate_score = aggregate_score
        self.tools_used = tools_used if tools_used is not None else []


Transcript = Union[SessionLog, EvalSuite, Outcome]


def unsupported(transcript: Any) -> TypeError:
    return TypeError(f"not a transcript: {type(transcript).__name__}")

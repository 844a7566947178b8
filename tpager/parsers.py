"""Format detection and per-dialect parsers into the canonical model."""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable

from tpager.evallog import parse_eval_log
from tpager.session import (
    ALTERNATE, NATIVE, Event, Outcome, SessionLog, Transcript, Turn,
    UnrecognizedFormatError, Validation, decode_line, get_num, get_str,
    keep_last,
)

logger = logging.getLogger(__name__)

EVAL = "eval"
OUTCOME = "outcome"

NATIVE_TURN_KINDS = frozenset((
    "user.message", "assistant.message", "tool.execution_start", "tool.result",
))

_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}$"
)
_SNIFF_LINES = 10


# ── Reading ───────────────────────────────────────────────────────────

def read_complete_lines(path: Path) -> tuple[list[str], int]:
    """Lines of *path* plus the byte offset consumed.

    A trailing line without a newline that does not decode yet is left
    unconsumed so a later read can pick up the rest of it.
    """
    data = Path(path).read_bytes()
    end = len(data)
    if data and not data.endswith(b"\n"):
        cut = data.rfind(b"\n") + 1
        if decode_line(data[cut:].decode("utf-8", errors="replace")) is None:
            end = cut
    return data[:end].decode("utf-8", errors="replace").split("\n"), end


def _first_lines(path: Path, limit: int) -> list[str]:
    lines = []
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            if line.strip():
                lines.append(line.strip())
                if len(lines) >= limit:
                    break
    return lines


# ── Detection ─────────────────────────────────────────────────────────

def is_eval_log(path: Path) -> bool:
    try:
        lines = _first_lines(path, 1)
    except OSError:
        return False
    if not lines:
        return False
    rec = decode_line(lines[0])
    return rec is not None and rec.get("type") == "eval.start" and "seq" in rec


def is_alternate_log(path: Path) -> bool:
    try:
        lines = _first_lines(path, _SNIFF_LINES)
    except OSError:
        return False
    for line in lines:
        rec = decode_line(line)
        if rec is None or rec.get("type") not in ("user", "assistant"):
            continue
        msg = rec.get("message")
        if isinstance(msg, dict) and "role" in msg:
            return True
    return False


def detect_format(path: Path) -> str | None:
    """One of native/alternate/eval/outcome, or None when unrecognized."""
    path = Path(path)
    try:
        first = _first_lines(path, 1)
    except OSError as e:
        logger.debug("cannot sniff %s: %s", path, e)
        return None
    looks_jsonl = bool(first) and first[0].startswith("{")
    if path.suffix == ".jsonl" or (path.suffix != ".json" and looks_jsonl):
        if is_eval_log(path):
            return EVAL
        if is_alternate_log(path):
            return ALTERNATE
        return NATIVE
    doc = _load_document(path)
    if isinstance(doc, list):
        return OUTCOME
    if isinstance(doc, dict) and ("transcript" in doc or isinstance(doc.get("tasks"), list)):
        return OUTCOME
    return None


def load_transcript(path: Path, tail: int | None = None) -> Transcript | None:
    """Detect and parse *path*; None means the file holds no events."""
    path = Path(path)
    fmt = detect_format(path)
    if fmt is None:
        raise UnrecognizedFormatError(path)
    if fmt == EVAL:
        return parse_eval_log(path)
    if fmt == ALTERNATE:
        return parse_alternate_log(path, tail=tail)
    if fmt == OUTCOME:
        return parse_outcome(path, tail=tail)
    return parse_native_log(path, tail=tail)


# ── Native session log ────────────────────────────────────────────────

def _absorb_native(log: SessionLog, ev: Event) -> None:
    raw = ev.raw
    if ev.kind == "session.start" and isinstance(raw.get("data"), dict):
        data = raw["data"]
        ctx = data.get("context")
        log.cwd = get_str(ctx, "cwd")
        log.branch = get_str(ctx, "branch")
        log.version = get_str(data, "copilotVersion")
    if not log.session_id:
        eid = get_str(raw, "id")
        if eid:
            log.session_id = eid.split(".")[0]
    log.observe_time(ev.timestamp)
    if ev.kind in NATIVE_TURN_KINDS:
        data = raw.get("data")
        log.turns.append(Turn(ev.kind, data if isinstance(data, dict) else {}, ev.timestamp))


def append_native_lines(log: SessionLog, lines: Iterable[str]) -> int:
    """Decode appended lines onto an open native log; returns events added."""
    added = 0
    for line in lines:
        raw = decode_line(line)
        if raw is None:
            continue
        ev = Event.from_raw(raw)
        log.events.append(ev)
        _absorb_native(log, ev)
        added += 1
    return added


def parse_native_log(path: Path, tail: int | None = None) -> SessionLog | None:
    path = Path(path)
    try:
        lines, offset = read_complete_lines(path)
    except OSError as e:
        logger.warning("cannot read %s: %s", path, e)
        return None
    log = SessionLog(NATIVE, path=path, offset=offset)
    dir_name = path.resolve().parent.name
    if _UUID_RE.match(dir_name):
        log.session_id = dir_name
    append_native_lines(log, lines)
    if not log.events:
        logger.info("no events in %s", path)
        return None
    log.turns = keep_last(log.turns, tail)
    return log


# ── Alternate session log ─────────────────────────────────────────────

def _joined_text(content: Any, sep: str = "") -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return sep.join(
            get_str(b, "text") for b in content
            if isinstance(b, dict) and b.get("type") == "text"
        )
    return ""


def _tool_result_content(block: dict) -> str:
    c = block.get("content")
    if c is None:
        return ""
    if isinstance(c, (str, list)):
        return _joined_text(c, "\n")
    return json.dumps(c, ensure_ascii=False)


def alternate_turns(raw: dict, ts=None) -> list[Turn]:
    """Turns contributed by one alternate-dialect record."""
    kind = raw.get("type")
    msg = raw.get("message")
    turns: list[Turn] = []
    if kind == "user" and isinstance(msg, dict):
        content = msg.get("content")
        if isinstance(content, list):
            for block in content:
                if not isinstance(block, dict) or block.get("type") != "tool_result":
                    continue
                turns.append(Turn("tool.result", {
                    "toolUseId": get_str(block, "tool_use_id"),
                    "result": {
                        "content": _tool_result_content(block),
                        "status": "error" if block.get("is_error") is True else "success",
                    },
                }, ts))
        if not turns:
            turns.append(Turn("user.message", {"content": _joined_text(content)}, ts))
    elif kind == "assistant" and isinstance(msg, dict):
        content = msg.get("content")
        if not isinstance(content, list):
            return turns
        for block in content:
            if not isinstance(block, dict):
                continue
            btype = block.get("type")
            if btype == "text":
                text = get_str(block, "text")
                if text.strip():
                    turns.append(Turn("assistant.message", {"content": text}, ts))
            elif btype == "tool_use":
                args = block.get("input")
                turns.append(Turn("tool.execution_start", {
                    "toolName": get_str(block, "name"),
                    "toolUseId": get_str(block, "id"),
                    "arguments": args if args is not None else {},
                }, ts))
            elif btype == "thinking":
                text = get_str(block, "thinking")
                if text.strip():
                    turns.append(Turn("assistant.thinking", {"content": text}, ts))
    elif kind == "queue-operation" and raw.get("operation") == "enqueue":
        # Typed while the assistant was busy
        if isinstance(msg, dict):
            text = _joined_text(msg.get("content"))
            if text:
                turns.append(Turn("user.message", {"content": text, "queued": True}, ts))
    return turns


def parse_alternate_log(path: Path, tail: int | None = None) -> SessionLog | None:
    path = Path(path)
    try:
        lines, offset = read_complete_lines(path)
    except OSError as e:
        logger.warning("cannot read %s: %s", path, e)
        return None
    log = SessionLog(ALTERNATE, path=path, offset=offset)
    for line in lines:
        raw = decode_line(line)
        if raw is None:
            continue
        ev = Event.from_raw(raw)
        log.events.append(ev)
        log.session_id = log.session_id or get_str(raw, "sessionId")
        log.branch = log.branch or get_str(raw, "gitBranch")
        log.cwd = log.cwd or get_str(raw, "cwd")
        log.version = log.version or get_str(raw, "version")
        log.observe_time(ev.timestamp)
        log.turns.extend(alternate_turns(raw, ev.timestamp))
    if not log.events:
        logger.info("no events in %s", path)
        return None
    log.turns = keep_last(log.turns, tail)
    return log


# ── Evaluation outcome document ───────────────────────────────────────

def _load_document(path: Path) -> Any:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.debug("not a JSON document %s: %s", path, e)
        return None


def _validations(obj: Any) -> list[Validation]:
    if not isinstance(obj, dict):
        return []
    out = []
    for name, v in obj.items():
        out.append(Validation(
            name,
            float(get_num(v, "score")),
            isinstance(v, dict) and v.get("passed") is True,
            get_str(v, "feedback"),
        ))
    return out


def _int(obj: Any, key: str) -> int:
    if isinstance(obj, dict):
        v = obj.get(key)
        if isinstance(v, int) and not isinstance(v, bool):
            return v
    return 0


def _items(obj: Any) -> list:
    return obj if isinstance(obj, list) else []


def outcome_from_document(doc: Any, tail: int | None = None) -> Outcome | None:
    if isinstance(doc, list):
        return Outcome(items=keep_last(doc, tail))
    if not isinstance(doc, dict):
        return None

    tasks = doc.get("tasks")
    if isinstance(tasks, list) and tasks:
        task = tasks[0] if isinstance(tasks[0], dict) else {}
        out = Outcome(
            task_name=get_str(task, "display_name"),
            task_id=get_str(task, "test_id"),
            status=get_str(task, "status"),
            model_id=get_str(doc.get("config"), "model_id"),
        )
        summary = doc.get("summary")
        out.aggregate_score = float(get_num(summary, "AggregateScore"))
        out.duration_ms = float(get_num(summary, "DurationMs"))
        runs = [r for r in _items(task.get("runs")) if isinstance(r, dict)]
        if runs:
            run = next((r for r in runs if _items(r.get("transcript"))), runs[0])
            out.items = _items(run.get("transcript"))
            out.final_output = get_str(run, "final_output")
            if isinstance(run.get("duration_ms"), (int, float)):
                out.duration_ms = float(run["duration_ms"])
            digest = run.get("session_digest")
            out.total_turns = _int(digest, "total_turns")
            out.tool_call_count = _int(digest, "tool_call_count")
            out.tokens_in = _int(digest, "tokens_in")
            out.tokens_out = _int(digest, "tokens_out")
            if isinstance(digest, dict):
                out.tools_used = [t for t in _items(digest.get("tools_used")) if isinstance(t, str) and t]
            out.validations = _validations(run.get("validations"))
        out.items = keep_last(out.items, tail)
        return out

    sess = doc.get("session")
    return Outcome(
        items=keep_last(_items(doc.get("transcript")), tail),
        task_name=get_str(doc, "task_name"),
        task_id=get_str(doc, "task_id"),
        status=get_str(doc, "status"),
        prompt=get_str(doc, "prompt"),
        final_output=get_str(doc, "final_output"),
        duration_ms=float(get_num(doc, "duration_ms")),
        total_turns=_int(sess, "total_turns"),
        tool_call_count=_int(sess, "tool_call_count"),
        tokens_in=_int(sess, "tokens_in"),
        tokens_out=_int(sess, "tokens_out"),
        validations=_validations(doc.get("validations")),
    )


def parse_outcome(path: Path, tail: int | None = None) -> Outcome | None:
    doc = _load_document(Path(path))
    if doc is None:
        return None
    return outcome_from_document(doc, tail=tail)

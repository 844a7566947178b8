"""Read command — open a transcript and export its turns as records."""
from __future__ import annotations

import json
from pathlib import Path

from tpager.formatters.human import MAX_VALUE_CHARS, item_kind, turn_matches
from tpager.parsers import load_transcript
from tpager.session import (
    EvalSuite, Outcome, SessionLog, Transcript, TranscriptError, content_string,
    get_str, unsupported,
)


def open_transcript(path: Path | str, tail: int | None = None) -> Transcript | None:
    """Detect and parse *path*; None when it holds no events."""
    path = Path(path)
    if not path.is_file():
        raise TranscriptError(f"File not found: {path}")
    return load_transcript(path, tail=tail)


def _record(**fields) -> dict:
    return {k: v for k, v in fields.items() if v is not None}


def _iso(ts) -> str | None:
    return ts.isoformat() if ts else None


def _clip(text: str, full: bool) -> str:
    if full or len(text) <= MAX_VALUE_CHARS:
        return text
    return text[:MAX_VALUE_CHARS] + "..."


def _args(value) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)


# ── Session logs ──────────────────────────────────────────────────────

def session_records(log: SessionLog, flt: str | None = None, expand: bool = False,
                    full: bool = False) -> list[dict]:
    # toolCallId -> toolName, so results can be named
    names = {}
    for t in log.turns:
        if t.kind == "tool.execution_start":
            call_id = get_str(t.data, "toolCallId") or get_str(t.data, "toolUseId")
            if call_id:
                names[call_id] = t.tool_name

    records = []
    index = 0
    for t in log.turns:
        if not turn_matches(t, flt):
            continue
        ts = _iso(t.timestamp)
        # Tool events belong to the most recent message turn
        current = max(index - 1, 0)
        if t.kind == "user.message":
            records.append(_record(turn=index, role="user", timestamp=ts,
                                   content=t.content, content_length=len(t.content)))
            index += 1
        elif t.kind == "assistant.message":
            requests = t.data.get("toolRequests")
            calls = [get_str(r, "toolName") or get_str(r, "name")
                     for r in requests if isinstance(r, dict)] if isinstance(requests, list) else []
            records.append(_record(turn=index, role="assistant", timestamp=ts,
                                   content=t.content, content_length=len(t.content),
                                   tool_calls=calls or None))
            index += 1
        elif t.kind == "tool.execution_start":
            records.append(_record(
                turn=current, role="tool", timestamp=ts, tool_name=t.tool_name, status="start",
                args=_args(t.data.get("arguments")) if expand else None))
        elif t.kind == "tool.result":
            call_id = get_str(t.data, "toolCallId") or get_str(t.data, "toolUseId")
            result = t.result
            output = content_string(result["content"]) if "content" in result else ""
            records.append(_record(
                turn=current, role="tool", timestamp=ts,
                tool_name=t.tool_name or names.get(call_id) or None,
                status="complete",
                result_status=(get_str(result, "status") or None) if expand else None,
                result_length=len(output),
                result=_clip(output, full) if expand else None))
    return records


# ── Evaluation suites ─────────────────────────────────────────────────

def eval_records(suite: EvalSuite, flt: str | None = None, expand: bool = False,
                 full: bool = False) -> list[dict]:
    records = []
    for index, case in enumerate(suite.cases):
        if flt == "error" and case.passed is not False and case.error is None:
            continue
        if flt in (None, "error", "user"):
            records.append(_record(turn=index, role="user", content=case.prompt,
                                   content_length=len(case.prompt)))
        if flt in (None, "error", "tool"):
            for ev in case.tool_events:
                records.append(_record(turn=index, role="tool", tool_name=ev.name,
                                       status="complete"))
        if flt in (None, "error", "assistant"):
            status = {True: "passed", False: "failed"}.get(case.passed, "running")
            message = case.message
            records.append(_record(turn=index, role="assistant", content=_clip(message, full),
                                   content_length=len(message), status=status,
                                   tool_calls=list(case.tools_used) or None,
                                   result=case.error if expand else None))
    return records


# ── Evaluation outcome documents ──────────────────────────────────────

def outcome_records(out: Outcome, flt: str | None = None, expand: bool = False,
                    full: bool = False) -> list[dict]:
    records = []
    index = 0
    message_index = 0
    for item in out.items:
        if not isinstance(item, dict):
            continue
        itype = get_str(item, "type").lower()
        kind = item_kind(itype, message_index)
        if itype == "message":
            message_index += 1
        if itype == "tool.execution_partial_result":
            continue
        if flt == "error":
            if item.get("success") is not False:
                continue
        elif flt is not None and kind != flt:
            continue
        content = get_str(item, "content") or get_str(item, "message")
        if kind == "tool":
            result = content_string(item["tool_result"]) if item.get("tool_result") is not None else ""
            records.append(_record(
                turn=index, role="tool", tool_name=get_str(item, "tool_name") or None,
                status="start" if itype == "tool.execution_start" else "complete",
                args=_args(item.get("arguments")) if expand else None,
                result_status=("error" if item.get("success") is False else "success") if expand else None,
                result_length=len(result) if result else None,
                result=_clip(result, full) if expand and result else None))
        else:
            records.append(_record(turn=index, role=kind if kind != "other" else itype,
                                   content=content, content_length=len(content)))
        index += 1
    return records


def turn_records(transcript: Transcript, flt: str | None = None, expand: bool = False,
                 full: bool = False) -> list[dict]:
    """One flat record per turn, for JSON-lines output."""
    if isinstance(transcript, SessionLog):
        return session_records(transcript, flt, expand, full)
    if isinstance(transcript, EvalSuite):
        return eval_records(transcript, flt, expand, full)
    if isinstance(transcript, Outcome):
        return outcome_records(transcript, flt, expand, full)
    raise unsupported(transcript)

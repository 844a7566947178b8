"""Evaluation-run logs: a fold over eval.* / case.* / tool.* records."""
from __future__ import annotations

import logging
from pathlib import Path

from tpager.session import (
    EvalCase, EvalSuite, ToolEvent, get_num, get_str, iter_jsonl, parse_ts,
)

logger = logging.getLogger(__name__)


def _int(data: dict, key: str) -> int | None:
    v = data.get(key)
    if isinstance(v, int) and not isinstance(v, bool):
        return v
    return None


def apply_eval_record(suite: EvalSuite, cursor: int | None, rec: dict) -> int | None:
    """Fold one record into *suite*.

    *cursor* is the index of the open case (None when no case is open);
    the return value is the cursor to carry into the next record.
    """
    kind = rec.get("type")
    data = rec.get("data")
    if not isinstance(data, dict):
        return cursor
    case = suite.cases[cursor] if cursor is not None else None

    if kind == "eval.start":
        suite.suite = get_str(data, "suite")
        suite.description = get_str(data, "description")
        count = _int(data, "case_count")
        if count is not None:
            suite.case_count = count
    elif kind == "case.start":
        suite.cases.append(EvalCase(get_str(data, "case"), get_str(data, "prompt")))
        suite.current_case = suite.cases[-1].name
        return len(suite.cases) - 1
    elif kind == "eval.complete":
        for attr, key in (("total_passed", "passed"), ("total_failed", "failed"),
                          ("total_skipped", "skipped"), ("total_tool_calls", "total_tool_calls")):
            v = _int(data, key)
            if v is not None:
                setattr(suite, attr, v)
        if "total_duration_ms" in data:
            suite.total_duration_ms = float(get_num(data, "total_duration_ms"))
    elif kind == "case.complete":
        if case is not None:
            if isinstance(data.get("passed"), bool):
                case.passed = data["passed"]
            if "duration_ms" in data:
                case.duration_ms = float(get_num(data, "duration_ms"))
            for attr, key in (("tool_call_count", "tool_call_count"),
                              ("response_length", "response_length")):
                v = _int(data, key)
                if v is not None:
                    setattr(case, attr, v)
        suite.current_case = None
        return None
    elif case is None:
        # Remaining kinds only touch the open case
        return cursor
    elif kind == "message":
        case.message_parts.append(get_str(data, "content"))
    elif kind == "tool.start":
        name = get_str(data, "tool_name")
        started = parse_ts(rec.get("ts"))
        if started is not None:
            case.pending_tools[get_str(data, "tool_call_id")] = started
        if name not in case.tools_used:
            case.tools_used.append(name)
    elif kind == "tool.complete":
        call_id = get_str(data, "tool_call_id")
        case.tool_events.append(ToolEvent(
            get_str(data, "tool_name"), call_id, float(get_num(data, "duration_ms"))))
        case.pending_tools.pop(call_id, None)
    elif kind == "assertion.result":
        fb = get_str(data, "feedback")
        case.feedback = f"{case.feedback}; {fb}" if case.feedback else fb
    elif kind == "error":
        case.error = get_str(data, "message")
    return cursor


def fill_totals(suite: EvalSuite) -> None:
    """Derive totals from the cases when no eval.complete was seen."""
    if suite.total_passed or suite.total_failed or not suite.cases:
        return
    suite.total_passed = sum(1 for c in suite.cases if c.passed is True)
    suite.total_failed = sum(1 for c in suite.cases if c.passed is False)
    suite.total_duration_ms = sum(c.duration_ms for c in suite.cases)
    suite.total_tool_calls = sum(c.tool_call_count for c in suite.cases)


def parse_eval_log(path: Path) -> EvalSuite | None:
    suite = EvalSuite()
    cursor = None
    try:
        for rec in iter_jsonl(Path(path)):
            cursor = apply_eval_record(suite, cursor, rec)
    except OSError as e:
        logger.warning("cannot read %s: %s", path, e)
        return None
    fill_totals(suite)
    if not suite.cases and not suite.suite:
        logger.info("no eval cases in %s", path)
        return None
    return suite

"""Per-file statistics for aggregate reports."""
from __future__ import annotations

import logging
import re
from pathlib import Path

from tpager.parsers import EVAL, OUTCOME, load_transcript
from tpager.session import (
    EvalSuite, Outcome, SessionLog, TranscriptError, get_str,
)

logger = logging.getLogger(__name__)

_MODEL_RE = re.compile(r"(?:gpt-|claude-|sonnet-|haiku-|opus-)[^\s(),]*", re.IGNORECASE)


def model_from_agent(agent: str) -> str | None:
    """Pull a model id such as "gpt-5.1-codex" out of an agent name."""
    m = _MODEL_RE.search(agent)
    return m.group(0) if m else None


def _session_stats(log: SessionLog) -> dict:
    user_count = 0
    assistant_count = 0
    tool_calls = 0
    errors = 0
    tool_usage: dict[str, int] = {}
    for turn in log.turns:
        if turn.kind == "user.message":
            user_count += 1
        elif turn.kind == "assistant.message":
            assistant_count += 1
        elif turn.kind == "tool.execution_start":
            tool_calls += 1
            name = turn.tool_name
            if name:
                tool_usage[name] = tool_usage.get(name, 0) + 1
        elif turn.is_error:
            errors += 1

    agent = ""
    for ev in log.events:
        if ev.kind == "session.start":
            data = ev.raw.get("data")
            agent = get_str(data.get("context") if isinstance(data, dict) else None, "agentName")
            break

    return {
        "format": log.dialect,
        "model": model_from_agent(agent) if agent else None,
        "turn_count": user_count + assistant_count,
        "tool_call_count": tool_calls,
        "error_count": errors,
        "duration_seconds": log.duration,
        "aggregate_score": None,
        "passed": None,
        "tool_usage": tool_usage,
        "agent": agent,
    }


def _eval_stats(suite: EvalSuite) -> dict:
    tool_usage: dict[str, int] = {}
    for case in suite.cases:
        for name in case.tools_used:
            tool_usage[name] = tool_usage.get(name, 0) + 1
    cases = len(suite.cases)
    return {
        "format": EVAL,
        "task_name": suite.suite,
        "status": "passed" if suite.total_failed == 0 else "failed",
        "turn_count": cases,
        "tool_call_count": suite.total_tool_calls,
        "error_count": sum(1 for c in suite.cases if c.error is not None),
        "duration_seconds": suite.total_duration_ms / 1000,
        "aggregate_score": suite.total_passed / cases if cases else 0.0,
        "passed": suite.total_failed == 0 and suite.total_passed > 0,
        "tool_usage": tool_usage,
    }


def _outcome_stats(out: Outcome) -> dict:
    return {
        "format": OUTCOME,
        "model": out.model_id or None,
        "task_name": out.task_name or None,
        "task_id": out.task_id or None,
        "status": out.status or None,
        "turn_count": out.total_turns,
        "tool_call_count": out.tool_call_count,
        "error_count": 0,
        "duration_seconds": out.duration_ms / 1000,
        "aggregate_score": out.aggregate_score,
        "passed": all(v.passed for v in out.validations) if out.validations else None,
        "tool_usage": {name: 1 for name in out.tools_used},
    }


def file_stats(path: Path | str) -> dict | None:
    """Counts for one transcript file; None when it cannot be read."""
    path = Path(path)
    try:
        transcript = load_transcript(path)
    except (TranscriptError, OSError) as e:
        logger.warning("failed to parse %s: %s", path, e)
        return None
    if transcript is None:
        return None

    base = {"file_path": str(path), "model": None, "task_name": None,
            "task_id": None, "status": None, "agent": None}
    if isinstance(transcript, SessionLog):
        base.update(_session_stats(transcript))
    elif isinstance(transcript, EvalSuite):
        base.update(_eval_stats(transcript))
    elif isinstance(transcript, Outcome):
        base.update(_outcome_stats(transcript))
    logger.debug("stats for %s (%s)", path, base["format"])
    return base

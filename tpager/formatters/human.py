"""Human formatter — transcripts to styled markup lines for the terminal."""
from __future__ import annotations

import json
import os
import re
import time
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.errors import MarkupError
from rich.markup import escape

from tpager.formatters.markdown import render_markdown_lines
from tpager.layout import (
    format_age, format_duration, format_relative_time, format_size, literal, pad_visible,
    split_lines, strip_markup, styled, truncate_markup_to_width, visible_width,
)
from tpager.session import (
    EvalCase, EvalSuite, Outcome, SessionLog, Transcript, Turn,
    content_string, get_str, unsupported,
)

MAX_VALUE_CHARS = 500
MAX_RESULT_LINES = 20
MAX_RESPONSE_LINES = 20
COLLAPSED_TOOL_LIMIT = 6

REJECTION_PHRASES = (
    "The user doesn't want to proceed",
    "Request interrupted by user",
)

_BINARY_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")

_FILE_TOOLS = ("Read", "Write", "Edit", "MultiEdit")

_USER_ITEMS = ("user", "user_message", "user.message", "human")
_ASSISTANT_ITEMS = ("assistant", "assistant_message", "assistant.message", "ai")
_TOOL_ITEMS = (
    "tool", "tool_call", "tool_result", "function",
    "toolexecutionstart", "toolexecutioncomplete",
    "tool.execution_start", "tool.execution_complete",
    "tool.execution_partial_result", "skill.invoked",
)


# ── Small helpers ─────────────────────────────────────────────────────

def separator(width: int) -> str:
    return styled("dim", "─" * max(40, width))


def placeholder(text: str = "No matching events.") -> list[str]:
    return [styled("dim", f"  {text}")]


def truncate_value(s: str, limit: int, full: bool = False) -> str:
    if full or len(s) <= limit:
        return s
    return s[:limit] + f"… [{len(s) - limit} more chars]"


def format_properties(value: Any, prefix: str, limit: int = MAX_VALUE_CHARS,
                      full: bool = False) -> list[str]:
    """Flatten tool arguments into plain "key: value" lines."""
    lines = []
    if isinstance(value, dict):
        for key, v in value.items():
            text = v if isinstance(v, str) else json.dumps(v, ensure_ascii=False)
            for seg in split_lines(truncate_value(text, limit, full)):
                lines.append(f"{prefix}{key}: {seg}")
    elif isinstance(value, str):
        for seg in split_lines(truncate_value(value, limit, full)):
            lines.append(f"{prefix}{seg}")
    else:
        lines.append(prefix + truncate_value(json.dumps(value, ensure_ascii=False), limit, full))
    return lines


def tool_context(name: str, args: Any, full: bool = False) -> str:
    """Short description of what a tool call touches."""
    if not isinstance(args, dict):
        return ""
    if name in _FILE_TOOLS:
        return os.path.basename(get_str(args, "file_path"))
    if name == "Bash":
        if "description" in args:
            return get_str(args, "description")
        return truncate_value(get_str(args, "command"), 60, full)
    if name in ("Glob", "Grep"):
        return get_str(args, "pattern")
    if name == "Task":
        return get_str(args, "description")
    return ""


def is_binary(text: str) -> bool:
    return bool(_BINARY_RE.search(text))


def is_rejection(content: str) -> bool:
    return any(p in content for p in REJECTION_PHRASES)


def turn_matches(turn: Turn, flt: str | None) -> bool:
    if flt is None:
        return True
    if flt == "user":
        return turn.kind == "user.message"
    if flt == "assistant":
        return turn.kind in ("assistant.message", "assistant.thinking")
    if flt == "tool":
        return turn.kind in ("tool.execution_start", "tool.result")
    if flt == "error":
        return turn.is_error
    return True


# ── Session logs ──────────────────────────────────────────────────────

def _result_lines(margin: str, style: str, content: str, full: bool) -> list[str]:
    if is_binary(content):
        return [margin + styled(style, f"┃   [binary content, {len(content.encode('utf-8', 'replace'))} bytes]")]
    out = [margin + styled(style, "┃")]
    body = split_lines(truncate_value(content, MAX_VALUE_CHARS, full))
    if not full:
        body = body[:MAX_RESULT_LINES]
    out.extend(margin + styled(style, f"┃   {line}") for line in body)
    return out


def _session_turn_lines(turn: Turn, margin: str, expand: bool, full: bool,
                        width: int) -> list[str]:
    data = turn.data
    lines: list[str] = []
    if turn.kind == "user.message":
        lines.append(separator(width))
        label = "┃ USER (queued)" if data.get("queued") is True else "┃ USER"
        lines.append(margin + styled("blue", label))
        lines.extend(margin + styled("blue", f"┃ {line}") for line in split_lines(turn.content))

    elif turn.kind == "assistant.message":
        lines.append(separator(width))
        lines.append(margin + styled("green", "┃ ASSISTANT"))
        if turn.content:
            lines.extend(margin + line for line in render_markdown_lines(turn.content, "green"))
        requests = data.get("toolRequests")
        for req in requests if isinstance(requests, list) else ():
            name = get_str(req, "toolName") or get_str(req.get("function") if isinstance(req, dict) else None, "name")
            lines.append(margin + styled("yellow", f"┃ 🔧 Tool request: {name}"))
        reasoning = get_str(data, "reasoningText")
        if expand and reasoning:
            lines.append(margin + styled("dim", "┃ 💭 Thinking:"))
            lines.extend(margin + styled("dim", f"┃   {line}") for line in split_lines(reasoning))

    elif turn.kind == "assistant.thinking":
        if expand and turn.content:
            lines.append(margin + styled("dim", "┃ 💭 THINKING"))
            lines.extend(margin + styled("dim", f"┃   {line}") for line in split_lines(turn.content))

    elif turn.kind == "tool.execution_start":
        name = turn.tool_name
        ctx = tool_context(name, data.get("arguments"), full)
        label = f"TOOL: {name} — {ctx}" if ctx else f"TOOL: {name}"
        lines.append(margin + styled("yellow", f"┃ {label}"))
        if expand and "arguments" in data:
            lines.append(margin + styled("dim", "┃   Args:"))
            lines.extend(margin + styled("dim", line)
                         for line in format_properties(data["arguments"], "┃     ", full=full))

    elif turn.kind == "tool.result":
        result = turn.result
        content = content_string(result["content"]) if "content" in result else ""
        error = turn.is_error
        rejected = error and bool(content) and is_rejection(content)
        if rejected:
            style, label = "yellow", "┃ ⚠️ Rejected:"
        elif error:
            style, label = "red", "┃ ❌ ERROR:"
        else:
            style, label = "dim", "┃ ✅ Result"
        if not expand and content:
            label += f" ({len(content):,} chars)"
        lines.append(margin + styled(style, label))
        if expand and content:
            lines.extend(_result_lines(margin, style, content, full))
    return lines


def render_session_lines(log: SessionLog, flt: str | None = None, expand: bool = False,
                         full: bool = False, width: int = 80) -> list[str]:
    turns = [t for t in log.turns if turn_matches(t, flt)]
    if not turns:
        return placeholder()
    lines: list[str] = []
    for turn in turns:
        rel = ""
        if turn.timestamp and log.start_time:
            rel = format_relative_time((turn.timestamp - log.start_time).total_seconds())
        margin = styled("dim", f"  {rel:>10}  ")
        lines.extend(_session_turn_lines(turn, margin, expand, full, width))
    if not lines:
        return placeholder()
    lines.append("")
    return lines


# ── Evaluation suites ─────────────────────────────────────────────────

def _case_badge(case: EvalCase) -> str:
    if case.passed is True:
        return styled("green", "✅ PASS")
    if case.passed is False:
        return styled("red", "❌ FAIL")
    return styled("yellow", "⏳ RUNNING")


def _case_lines(index: int, case: EvalCase, sections: set[str], expand: bool) -> list[str]:
    dur = styled("dim", f" ({case.duration_ms / 1000:.1f}s)") if case.duration_ms > 0 else ""
    lines = [styled("bold", f"━━━ Case {index}: {case.name} ") + _case_badge(case) + dur, ""]

    if "user" in sections:
        lines.append(styled("dim", "  Prompt:"))
        lines.extend(styled("cyan", f"    {line}") for line in split_lines(case.prompt))
        lines.append("")

    if "tool" in sections and (case.tool_events or case.tools_used):
        lines.append(styled("dim", f"  Tools ({case.tool_call_count}):"))
        if expand or len(case.tool_events) <= COLLAPSED_TOOL_LIMIT:
            for ev in case.tool_events:
                lines.append("    " + styled("yellow", "⚡") + " " + escape(ev.name) + " "
                             + styled("dim", f"({ev.duration_ms:.0f}ms)"))
        else:
            lines.append("    " + ", ".join(styled("yellow", t) for t in case.tools_used))
        lines.append("")

    response = case.message
    if "assistant" in sections and response:
        lines.append(styled("dim", "  Response:"))
        body = split_lines(response)
        shown = body if expand else body[:MAX_RESPONSE_LINES]
        lines.extend("    " + literal(line) for line in shown)
        if len(shown) < len(body):
            lines.append(styled("dim", f"    ... ({len(body) - len(shown)} more lines, press 't' to expand)"))
        lines.append("")

    if "feedback" in sections and case.feedback:
        lines.append(styled("green" if case.passed is True else "red", f"  Assertion: {case.feedback}"))
        lines.append("")

    if "feedback" in sections and case.error is not None:
        lines.append(styled("red", f"  ⚠ Error: {case.error}"))
        lines.append("")
    return lines


def render_eval_lines(suite: EvalSuite, flt: str | None = None, expand: bool = False) -> list[str]:
    """Per-case sections; a role filter keeps only the matching section."""
    if flt in (None, "error"):
        sections = {"user", "tool", "assistant", "feedback"}
    else:
        sections = {flt}
    lines: list[str] = []
    for i, case in enumerate(suite.cases, 1):
        if flt == "error" and case.passed is not False and case.error is None:
            continue
        lines.extend(_case_lines(i, case, sections, expand))
    if not lines:
        return placeholder()
    lines.append("")
    return lines


# ── Evaluation outcome documents ──────────────────────────────────────

def item_kind(itype: str, message_index: int) -> str:
    # Bare "message" items: the first is the prompt, later ones are replies
    if itype in _USER_ITEMS or (itype == "message" and message_index == 0):
        return "user"
    if itype in _ASSISTANT_ITEMS or (itype == "message" and message_index > 0):
        return "assistant"
    if itype in _TOOL_ITEMS:
        return "tool"
    return "other"


def _outcome_tool_lines(item: dict, itype: str, name: str, content: str, margin: str,
                        expand: bool, full: bool) -> list[str]:
    ok = item.get("success") is not False
    style = "yellow" if ok else "red"
    lines = [margin + styled(style, f"┃ TOOL: {name}" if name else "┃ TOOL")]
    if expand:
        if item.get("arguments") is not None:
            lines.append(margin + styled("dim", "┃   Args:"))
            lines.extend(margin + styled("dim", line)
                         for line in format_properties(item["arguments"], "┃     ", full=full))
        if item.get("tool_result") is not None:
            res = content_string(item["tool_result"])
            if is_binary(res):
                lines.append(margin + styled("dim", f"┃   [binary content, {len(res.encode('utf-8', 'replace'))} bytes]"))
            else:
                body = split_lines(truncate_value(res, MAX_VALUE_CHARS, full))
                if not full:
                    body = body[:MAX_RESULT_LINES]
                for n, line in enumerate(body):
                    lines.append(margin + styled("dim", f"┃   Result: {line}" if n == 0 else f"┃   {line}"))
        if content:
            lines.append(margin + styled("dim", f"┃   {truncate_value(content, MAX_VALUE_CHARS, full)}"))
    elif itype == "tool.execution_complete" and item.get("tool_result") is not None:
        lines.append(margin + styled("dim", f"┃   ({len(content_string(item['tool_result']))} chars)"))
    if not ok:
        lines.append(margin + styled("red", "┃ ❌ Failed"))
    return lines


def render_outcome_lines(out: Outcome, flt: str | None = None, expand: bool = False,
                         full: bool = False, width: int = 80) -> list[str]:
    if not out.items:
        return placeholder("No events found")

    # tool_call_id -> tool_name, for completions that omit the name
    call_names = {}
    for item in out.items:
        if isinstance(item, dict) and get_str(item, "type").lower() == "tool.execution_start":
            call_id, name = get_str(item, "tool_call_id"), get_str(item, "tool_name")
            if call_id and name:
                call_names[call_id] = name

    lines: list[str] = []
    turn_index = 0
    message_index = 0
    for item in out.items:
        if not isinstance(item, dict):
            continue
        itype = get_str(item, "type").lower()
        content = get_str(item, "content") or get_str(item, "message")
        name = get_str(item, "tool_name") or call_names.get(get_str(item, "tool_call_id"), "")
        kind = item_kind(itype, message_index)
        if itype == "message":
            message_index += 1

        if flt == "error":
            if item.get("success") is not False:
                continue
        elif flt is not None and kind != flt:
            continue
        if itype == "tool.execution_partial_result":
            continue

        turn_index += 1
        margin = styled("dim", f"  {turn_index:>5}  ")
        lines.append(separator(width))
        if kind == "user":
            lines.append(margin + styled("blue", "┃ USER"))
            lines.extend(margin + styled("blue", f"┃ {line}") for line in split_lines(content))
        elif kind == "assistant":
            lines.append(margin + styled("green", "┃ ASSISTANT"))
            lines.extend(margin + line for line in render_markdown_lines(content, "green"))
        elif kind == "tool":
            lines.extend(_outcome_tool_lines(item, itype, name, content, margin, expand, full))
        else:
            lines.append(margin + styled("dim", f"┃ {itype}"))
            if content:
                lines.append(margin + styled("dim", f"┃ {truncate_value(content, 200, full)}"))
    if turn_index == 0:
        return placeholder()
    lines.append("")
    return lines


# ── Dispatch ──────────────────────────────────────────────────────────

def render_content_lines(transcript: Transcript, flt: str | None = None,
                         expand_tools: bool = False, full: bool = False,
                         width: int = 80) -> list[str]:
    """Styled lines for the scrollable body of the view."""
    if isinstance(transcript, SessionLog):
        return render_session_lines(transcript, flt, expand_tools, full, width)
    if isinstance(transcript, EvalSuite):
        return render_eval_lines(transcript, flt, expand_tools)
    if isinstance(transcript, Outcome):
        return render_outcome_lines(transcript, flt, expand_tools, full, width)
    raise unsupported(transcript)


# ── Header cards ──────────────────────────────────────────────────────

def _box(title: str, rows: list[str], width: int) -> list[str]:
    inner = max(40, width) - 2
    bar = styled("bold cyan", "│")

    def row(content: str) -> str:
        if visible_width(content) > inner:
            content = truncate_markup_to_width(content, inner)
        return bar + pad_visible(content, inner) + bar

    lines = ["", styled("bold cyan", "╭" + "─" * inner + "╮"), row(title),
             styled("bold cyan", "├" + "─" * inner + "┤")]
    lines.extend(row(r) for r in rows)
    lines.append(styled("bold cyan", "╰" + "─" * inner + "╯"))
    return lines


def _score_style(score: float) -> str:
    return "green" if score >= 0.7 else "red"


def _file_summary(path: Path) -> str:
    try:
        st = os.stat(path)
    except OSError:
        return Path(path).name
    age = format_age(time.time() - st.st_mtime)
    modified = "modified just now" if age == "now" else f"modified {age} ago"
    return f"{Path(path).name} ({format_size(st.st_size)}, {modified})"


def session_header_lines(log: SessionLog, width: int) -> list[str]:
    rows = []
    if log.session_id:
        rows.append("  Session:  " + styled("dim", log.session_id))
    if log.start_time:
        rows.append("  Started:  " + styled("dim", log.start_time.strftime("%Y-%m-%d %H:%M:%S")))
    if log.branch:
        rows.append("  Branch:   " + styled("dim", log.branch))
    if log.version:
        rows.append("  Version:  " + styled("dim", log.version))
    if log.cwd:
        rows.append("  Cwd:      " + styled("dim", log.cwd))
    rows.append("  Events:   " + styled("dim", str(log.event_count)))
    rows.append("  Duration: " + styled("dim", format_duration(log.duration)))
    if log.path is not None:
        rows.append("  File:     " + styled("dim", _file_summary(log.path)))
    return _box(styled("bold", "  📋 Session Log"), rows, width) + [""]


def eval_header_lines(suite: EvalSuite, width: int) -> list[str]:
    rows = []
    if suite.description:
        rows.append("  " + styled("dim", suite.description.rstrip()))
    rows.append(f"  Cases:    {styled('bold', str(len(suite.cases)))}/{suite.case_count}  "
                + styled("green", f"✅{suite.total_passed}") + " "
                + styled("red", f"❌{suite.total_failed}") + " "
                + styled("dim", f"⏭{suite.total_skipped}"))
    if suite.total_duration_ms > 0:
        rows.append("  Duration: " + styled("bold", f"{suite.total_duration_ms / 1000:.1f}s")
                    + f"  Tools: {suite.total_tool_calls}")
    return _box(styled("bold", f"  📋 Eval Suite: {suite.suite}"), rows, width) + [""]


def outcome_header_lines(out: Outcome, width: int) -> list[str]:
    rows = []
    if out.task_name:
        rows.append("  Task:     " + styled("bold", out.task_name))
    if out.task_id:
        rows.append("  ID:       " + styled("dim", out.task_id))
    if out.model_id:
        rows.append("  Model:    " + styled("dim", out.model_id))
    if out.status:
        status = out.status.lower()
        if status == "passed":
            badge = styled("green", "✅ PASS")
        elif status == "failed":
            badge = styled("red", "❌ FAIL")
        else:
            badge = styled("red", f"⚠ {out.status.upper()}")
        rows.append("  Status:   " + badge)
    if out.validations:
        avg = sum(v.score for v in out.validations) / len(out.validations)
        rows.append("  Score:    " + styled(_score_style(avg), f"{avg:.0%}"))
    if out.duration_ms > 0:
        rows.append("  Duration: " + styled("dim", format_duration(out.duration_ms / 1000)))
    if out.tool_call_count > 0:
        rows.append("  Tools:    " + styled("dim", f"{out.tool_call_count} calls"))
    if out.tokens_in or out.tokens_out:
        rows.append("  Tokens:   " + styled("dim", f"in={out.tokens_in}, out={out.tokens_out}"))
    lines = _box(styled("bold", "  🧪 Eval Transcript"), rows, width)
    if out.validations:
        lines += ["", styled("bold", "  Validations:")]
        for v in out.validations:
            icon = styled("green", "✓") if v.passed else styled("red", "✗")
            lines.append(f"    {icon} {escape(v.name)}: " + styled(_score_style(v.score), f"{v.score:.0%}"))
            if v.feedback:
                lines.append(styled("dim", f"      {v.feedback}"))
    return lines + [""]


def render_header_lines(transcript: Transcript, width: int = 80) -> list[str]:
    """Metadata card shown by the info overlay and stream output."""
    if isinstance(transcript, SessionLog):
        return session_header_lines(transcript, width)
    if isinstance(transcript, EvalSuite):
        return eval_header_lines(transcript, width)
    if isinstance(transcript, Outcome):
        return outcome_header_lines(transcript, width)
    raise unsupported(transcript)


def build_info_bar(transcript: Transcript, path: Path | str | None = None) -> str:
    """One-line summary for the top of the pager (markup)."""
    if isinstance(transcript, SessionLog):
        parts = []
        if transcript.session_id:
            parts.append(f"session {transcript.session_id}")
        if transcript.version:
            parts.append(transcript.version)
        parts.append(f"{transcript.event_count} events")
        return escape(f"[{' | '.join(parts)}]")
    if isinstance(transcript, EvalSuite):
        bar = f" {transcript.suite} "
        if transcript.total_passed:
            bar += f"✅{transcript.total_passed}"
        if transcript.total_failed:
            bar += f" ❌{transcript.total_failed}"
        if transcript.total_skipped:
            bar += f" ⏭{transcript.total_skipped}"
        if transcript.current_case is not None:
            bar += f" ⏳{transcript.current_case}"
        if transcript.total_duration_ms > 0:
            bar += f" {transcript.total_duration_ms / 1000:.1f}s"
        return escape(bar)
    if isinstance(transcript, Outcome):
        parts = []
        if transcript.task_id or transcript.task_name:
            parts.append(transcript.task_id or transcript.task_name)
        if transcript.model_id:
            parts.append(transcript.model_id)
        if transcript.duration_ms > 0:
            parts.append(format_duration(transcript.duration_ms / 1000))
        score = transcript.aggregate_score
        if score <= 0 and transcript.validations:
            score = sum(v.score for v in transcript.validations) / len(transcript.validations)
        if score > 0:
            parts.append(f"score: {score:.2f}")
        if transcript.tool_call_count > 0:
            parts.append(f"{transcript.tool_call_count} tool calls")
        if transcript.status:
            icon = "✅" if transcript.status.lower() == "passed" else "❌"
            parts.append(f"{icon} {transcript.status}")
        if not parts:
            return escape(f"[{Path(path).name if path else ''}]")
        return escape(f"[{' | '.join(parts)}]")
    raise unsupported(transcript)


# ── Stream output ─────────────────────────────────────────────────────

def write_markup_line(console: Console, line: str) -> None:
    """Print one markup line; invalid markup falls back to plain text."""
    try:
        console.print(line, highlight=False, emoji=False, soft_wrap=True)
    except MarkupError:
        console.print(strip_markup(line), markup=False, highlight=False, emoji=False, soft_wrap=True)


def format_stream(transcript: Transcript, console: Console, flt: str | None = None,
                  expand_tools: bool = False, full: bool = False) -> None:
    """Non-interactive output: header card then the full body."""
    width = console.width
    for line in render_header_lines(transcript, width):
        write_markup_line(console, line)
    for line in render_content_lines(transcript, flt, expand_tools, full, width):
        write_markup_line(console, line)

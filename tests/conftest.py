"""Shared fixtures for tpager tests."""
from __future__ import annotations

import json
import pytest
from pathlib import Path

from tpager.config import TerminalCaps


@pytest.fixture
def tmp_jsonl(tmp_path):
    """Factory: write a list of dicts as a JSONL file, return path."""
    def _make(records: list[dict], name: str = "session.jsonl") -> Path:
        p = tmp_path / name
        with open(p, "w", encoding="utf-8") as f:
            for rec in records:
                f.write(json.dumps(rec) + "\n")
        return p
    return _make


@pytest.fixture
def tmp_json(tmp_path):
    """Factory: write one JSON document, return path."""
    def _make(doc, name: str = "outcome.json") -> Path:
        p = tmp_path / name
        p.write_text(json.dumps(doc), encoding="utf-8")
        return p
    return _make


@pytest.fixture
def native_records():
    """A short native session: start, prompt, reply, one tool round trip."""
    return [
        {
            "type": "session.start",
            "id": "abc123.0",
            "timestamp": "2026-01-01T00:00:00Z",
            "data": {
                "copilotVersion": "1.2.3",
                "context": {"cwd": "/work", "branch": "main", "agentName": "gpt-5.1-codex (preview)"},
            },
        },
        {
            "type": "user.message",
            "timestamp": "2026-01-01T00:00:01Z",
            "data": {"content": "List the files"},
        },
        {
            "type": "assistant.message",
            "timestamp": "2026-01-01T00:00:03Z",
            "data": {
                "content": "Sure, **listing** now.",
                "toolRequests": [{"toolName": "Bash"}],
            },
        },
        {
            "type": "tool.execution_start",
            "timestamp": "2026-01-01T00:00:04Z",
            "data": {"toolName": "Bash", "toolCallId": "call-1",
                     "arguments": {"command": "ls", "description": "List files"}},
        },
        {
            "type": "tool.result",
            "timestamp": "2026-01-01T00:00:05Z",
            "data": {"toolCallId": "call-1",
                     "result": {"status": "error", "content": "permission denied"}},
        },
    ]


@pytest.fixture
def alternate_records():
    """The same kind of exchange in the block-list dialect."""
    return [
        {
            "type": "user",
            "sessionId": "sess-42",
            "gitBranch": "dev",
            "cwd": "/repo",
            "version": "2.0.1",
            "timestamp": "2026-01-01T00:00:00Z",
            "message": {"role": "user", "content": "Read the config"},
        },
        {
            "type": "assistant",
            "timestamp": "2026-01-01T00:00:02Z",
            "message": {
                "role": "assistant",
                "content": [
                    {"type": "thinking", "thinking": "Need to open it"},
                    {"type": "text", "text": "Opening it."},
                    {"type": "tool_use", "id": "tu-1", "name": "Read",
                     "input": {"file_path": "/repo/config.toml"}},
                ],
            },
        },
        {
            "type": "user",
            "timestamp": "2026-01-01T00:00:03Z",
            "message": {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": "tu-1", "content": "key = 1"},
                ],
            },
        },
    ]


@pytest.fixture
def eval_records():
    """An evaluation log with one passing and one failing case."""
    return [
        {"type": "eval.start", "seq": 0, "ts": "2026-01-01T00:00:00Z",
         "data": {"suite": "smoke", "description": "Smoke tests", "case_count": 2}},
        {"type": "case.start", "seq": 1, "data": {"case": "greet", "prompt": "Say hi"}},
        {"type": "tool.start", "seq": 2, "ts": "2026-01-01T00:00:01Z",
         "data": {"tool_name": "echo", "tool_call_id": "t1"}},
        {"type": "tool.complete", "seq": 3,
         "data": {"tool_name": "echo", "tool_call_id": "t1", "duration_ms": 12}},
        {"type": "message", "seq": 4, "data": {"content": "Hi "}},
        {"type": "message", "seq": 5, "data": {"content": "there"}},
        {"type": "assertion.result", "seq": 6, "data": {"feedback": "greeted"}},
        {"type": "case.complete", "seq": 7,
         "data": {"passed": True, "duration_ms": 1500, "tool_call_count": 1, "response_length": 8}},
        {"type": "case.start", "seq": 8, "data": {"case": "count", "prompt": "Count to 3"}},
        {"type": "error", "seq": 9, "data": {"message": "model timeout"}},
        {"type": "case.complete", "seq": 10, "data": {"passed": False, "duration_ms": 500}},
        {"type": "eval.complete", "seq": 11,
         "data": {"passed": 1, "failed": 1, "skipped": 0,
                  "total_duration_ms": 2000, "total_tool_calls": 1}},
    ]


@pytest.fixture
def outcome_doc():
    """A flat evaluation outcome document."""
    return {
        "task_name": "Fix bug",
        "task_id": "task-7",
        "status": "passed",
        "prompt": "Fix the bug",
        "final_output": "Done",
        "duration_ms": 42000,
        "session": {"total_turns": 3, "tool_call_count": 1, "tokens_in": 100, "tokens_out": 50},
        "validations": {
            "tests": {"score": 1.0, "passed": True, "feedback": "all green"},
            "style": {"score": 0.5, "passed": False, "feedback": "long lines"},
        },
        "transcript": [
            {"type": "message", "content": "Fix the bug"},
            {"type": "tool.execution_start", "tool_name": "edit", "tool_call_id": "c1",
             "arguments": {"path": "a.py"}},
            {"type": "tool.execution_complete", "tool_call_id": "c1",
             "tool_result": "ok", "success": True},
            {"type": "message", "content": "Done"},
        ],
    }


class FakeScreen:
    """Records frames and replays scripted keys."""

    def __init__(self, width: int = 80, height: int = 12, keys=()):
        self.caps = TerminalCaps(width, height, True)
        self.keys = list(keys)
        self.frames: list[list[str]] = []
        self.clears = 0

    def size(self) -> TerminalCaps:
        return self.caps

    def read_key(self, timeout: float = 0.05):
        return self.keys.pop(0) if self.keys else "q"

    def draw(self, lines, full_clear: bool = False) -> None:
        self.frames.append(list(lines))
        if full_clear:
            self.clears += 1


@pytest.fixture
def fake_screen():
    def _make(**kwargs) -> FakeScreen:
        return FakeScreen(**kwargs)
    return _make

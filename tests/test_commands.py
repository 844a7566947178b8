"""Tests for tpager.commands and the CLI entry point."""
from __future__ import annotations

import io
import json

import pytest

from tpager.__main__ import main
from tpager.commands.preview import UNAVAILABLE, preview_lines
from tpager.commands.read import open_transcript, turn_records
from tpager.commands.stats import file_stats, model_from_agent
from tpager.formatters.json import format_json, format_jsonl
from tpager.layout import strip_markup
from tpager.parsers import load_transcript
from tpager.session import TranscriptError


class TestFileStats:
    def test_native(self, tmp_jsonl, native_records):
        data = file_stats(tmp_jsonl(native_records))
        assert data["format"] == "native"
        assert data["turn_count"] == 2
        assert data["tool_call_count"] == 1
        assert data["error_count"] == 1
        assert data["tool_usage"] == {"Bash": 1}
        assert data["agent"] == "gpt-5.1-codex (preview)"
        assert data["model"] == "gpt-5.1-codex"
        assert data["duration_seconds"] == 5.0

    def test_eval(self, tmp_jsonl, eval_records):
        data = file_stats(tmp_jsonl(eval_records))
        assert data["format"] == "eval"
        assert data["task_name"] == "smoke"
        assert data["turn_count"] == 2
        assert data["error_count"] == 1
        assert data["status"] == "failed"
        assert data["passed"] is False
        assert data["aggregate_score"] == 0.5
        assert data["tool_usage"] == {"echo": 1}

    def test_outcome(self, tmp_json, outcome_doc):
        data = file_stats(tmp_json(outcome_doc))
        assert data["format"] == "outcome"
        assert data["status"] == "passed"
        assert data["turn_count"] == 3
        assert data["duration_seconds"] == 42.0
        # one validation failed
        assert data["passed"] is False

    def test_unrecognized(self, tmp_json):
        assert file_stats(tmp_json({"foo": 1}, name="x.json")) is None

    def test_model_from_agent(self):
        assert model_from_agent("my claude-sonnet-4, fast") == "claude-sonnet-4"
        assert model_from_agent("custom agent") is None


class TestPreview:
    def test_renders_tail(self, tmp_jsonl):
        records = [{"type": "user.message", "data": {"content": f"m{i}"}} for i in range(80)]
        lines = [strip_markup(line) for line in preview_lines(tmp_jsonl(records), max_turns=50)]
        assert sum(1 for l in lines if l.endswith("┃ USER")) == 50
        assert any(l.endswith("┃ m79") for l in lines)
        assert not any(l.endswith("┃ m29") for l in lines)

    def test_missing_file(self, tmp_path):
        assert preview_lines(tmp_path / "nope.jsonl") == list(UNAVAILABLE)

    def test_unrecognized(self, tmp_json):
        assert preview_lines(tmp_json({"foo": 1}, name="x.json")) == ["", "  (unable to load preview)"]


class TestTurnRecords:
    def test_native(self, tmp_jsonl, native_records):
        records = turn_records(load_transcript(tmp_jsonl(native_records)))
        assert [r["role"] for r in records] == ["user", "assistant", "tool", "tool"]
        user, assistant, start, result = records
        assert user == {"turn": 0, "role": "user", "timestamp": "2026-01-01T00:00:01+00:00",
                        "content": "List the files", "content_length": 14}
        assert assistant["turn"] == 1
        assert assistant["tool_calls"] == ["Bash"]
        assert start["status"] == "start"
        assert "args" not in start
        assert result["tool_name"] == "Bash"
        assert result["status"] == "complete"
        assert result["result_length"] == 17
        assert "result" not in result
        for rec in records:
            assert None not in rec.values()

    def test_native_expanded(self, tmp_jsonl, native_records):
        records = turn_records(load_transcript(tmp_jsonl(native_records)), expand=True)
        start, result = records[2], records[3]
        assert json.loads(start["args"]) == {"command": "ls", "description": "List files"}
        assert result["result_status"] == "error"
        assert result["result"] == "permission denied"

    def test_result_clipped_unless_full(self, tmp_jsonl):
        records = [{"type": "tool.result", "data": {"result": {"status": "success", "content": "x" * 600}}}]
        log = load_transcript(tmp_jsonl(records))
        assert turn_records(log, expand=True)[0]["result"] == "x" * 500 + "..."
        assert turn_records(log, expand=True, full=True)[0]["result"] == "x" * 600

    def test_filter(self, tmp_jsonl, native_records):
        records = turn_records(load_transcript(tmp_jsonl(native_records)), flt="error")
        assert len(records) == 1
        assert records[0]["status"] == "complete"

    def test_eval_error_filter(self, tmp_jsonl, eval_records):
        records = turn_records(load_transcript(tmp_jsonl(eval_records)), flt="error")
        assert [r["role"] for r in records] == ["user", "assistant"]
        assert records[1]["status"] == "failed"
        assert all(r["turn"] == 1 for r in records)

    def test_outcome(self, tmp_json, outcome_doc):
        records = turn_records(load_transcript(tmp_json(outcome_doc)))
        assert [r["role"] for r in records] == ["user", "tool", "tool", "assistant"]
        assert records[0]["content"] == "Fix the bug"
        assert records[1]["tool_name"] == "edit"


class TestJsonFormatter:
    def test_jsonl(self):
        buf = io.StringIO()
        format_jsonl([{"a": 1}, {"b": "é"}], buf)
        lines = buf.getvalue().splitlines()
        assert [json.loads(l) for l in lines] == [{"a": 1}, {"b": "é"}]

    def test_json(self):
        buf = io.StringIO()
        format_json({"x": [1, 2]}, buf)
        assert json.loads(buf.getvalue()) == {"x": [1, 2]}


class TestOpen:
    def test_missing(self, tmp_path):
        with pytest.raises(TranscriptError, match="File not found"):
            open_transcript(tmp_path / "missing.jsonl")


class TestMain:
    @pytest.fixture(autouse=True)
    def no_log_env(self, monkeypatch):
        monkeypatch.delenv("TPAGER_LOG", raising=False)

    def test_stream(self, tmp_jsonl, native_records, capsys):
        assert main([str(tmp_jsonl(native_records)), "--stream"]) == 0
        out = capsys.readouterr().out
        assert "List the files" in out
        assert "Session Log" in out

    def test_jsonl_output(self, tmp_jsonl, native_records, capsys):
        assert main([str(tmp_jsonl(native_records)), "--format", "json", "--filter", "user"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert [json.loads(l)["content"] for l in lines] == ["List the files"]

    def test_missing_file(self, tmp_path, capsys):
        assert main([str(tmp_path / "gone.jsonl")]) == 1
        assert "File not found" in capsys.readouterr().out

    def test_unrecognized(self, tmp_json, capsys):
        assert main([str(tmp_json({"foo": 1}, name="x.json"))]) == 1
        assert "Unrecognized transcript format: x.json" in capsys.readouterr().out

    def test_no_events(self, tmp_path, capsys):
        p = tmp_path / "empty.jsonl"
        p.write_text("{bad\n")
        assert main([str(p)]) == 0
        assert "No events found" in capsys.readouterr().out

    def test_log_file(self, tmp_jsonl, native_records, tmp_path, capsys):
        import logging

        log_path = tmp_path / "debug.log"
        logger = logging.getLogger("tpager")
        try:
            assert main([str(tmp_jsonl(native_records)), "--stream", "--log-file", str(log_path)]) == 0
            assert log_path.exists()
        finally:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
            logger.propagate = True

    def test_stats(self, tmp_jsonl, native_records, capsys):
        assert main([str(tmp_jsonl(native_records)), "--stats"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["tool_usage"] == {"Bash": 1}
        assert data["turn_count"] == 2

    def test_stats_unreadable(self, tmp_json, capsys):
        assert main([str(tmp_json({"foo": 1}, name="x.json")), "--stats"]) == 1
        assert "Cannot read transcript" in capsys.readouterr().out

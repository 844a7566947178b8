"""Tests for tpager.terminal — key decoding, drawing, file tailing."""
from __future__ import annotations

import io
import time

import pytest
from rich.console import Console

from tpager.terminal import ChangeFlag, FileWatcher, Screen, TailReader, split_keys


class TestSplitKeys:
    @pytest.mark.parametrize("data,keys", [
        ("j", ["j"]),
        ("ab", ["a", "b"]),
        ("\x1b[A", ["up"]),
        ("\x1bOB", ["down"]),
        ("\x1b[5~j", ["pgup", "j"]),
        ("\x1b[6~", ["pgdn"]),
        ("\x1b[H\x1b[F", ["home", "end"]),
        ("\x1b", ["esc"]),
        ("\r", ["enter"]),
        ("\x7f", ["backspace"]),
        ("\x03", ["ctrl-c"]),
        ("\x1b[99~", []),
    ])
    def test_decode(self, data, keys):
        assert split_keys(data) == keys


class TestChangeFlag:
    def test_consume_clears(self):
        flag = ChangeFlag()
        assert not flag.consume()
        flag.set()
        flag.set()
        assert flag.is_set()
        assert flag.consume()
        assert not flag.consume()


class TestFileWatcher:
    def test_sets_flag_on_append(self, tmp_path):
        p = tmp_path / "w.jsonl"
        p.write_text("{}\n")
        flag = ChangeFlag()
        watcher = FileWatcher(p, flag, interval=0.01).start()
        try:
            with open(p, "a") as f:
                f.write("{}\n")
            deadline = time.monotonic() + 3
            while not flag.is_set() and time.monotonic() < deadline:
                time.sleep(0.01)
            assert flag.is_set()
        finally:
            watcher.stop()


class TestTailReader:
    def test_reads_only_new_lines(self, tmp_path):
        p = tmp_path / "t.jsonl"
        p.write_text('{"n": 1}\n')
        reader = TailReader(p, offset=p.stat().st_size)
        assert reader.read_lines() == []
        with open(p, "a") as f:
            f.write('{"n": 2}\n{"n": 3}\n')
        assert reader.read_lines() == ['{"n": 2}', '{"n": 3}']
        assert reader.offset == p.stat().st_size

    def test_partial_line_buffered(self, tmp_path):
        p = tmp_path / "t.jsonl"
        p.write_text("")
        reader = TailReader(p)
        with open(p, "a") as f:
            f.write('{"n": ')
        assert reader.read_lines() == []
        with open(p, "a") as f:
            f.write('4}\n')
        assert reader.read_lines() == ['{"n": 4}']

    def test_complete_unterminated_record(self, tmp_path):
        p = tmp_path / "t.jsonl"
        p.write_text('{"n": 5}')
        assert TailReader(p).read_lines() == ['{"n": 5}']

    def test_split_multibyte_character(self, tmp_path):
        p = tmp_path / "t.jsonl"
        encoded = '{"s": "é"}\n'.encode("utf-8")
        p.write_bytes(encoded[:8])
        reader = TailReader(p)
        assert reader.read_lines() == []
        with open(p, "ab") as f:
            f.write(encoded[8:])
        assert reader.read_lines() == ['{"s": "é"}']

    def test_shrunk_file(self, tmp_path):
        p = tmp_path / "t.jsonl"
        p.write_text('{"n": 1}\n{"n": 2}\n')
        reader = TailReader(p, offset=p.stat().st_size)
        p.write_text('{"n": 1}\n')
        assert reader.read_lines() == []
        assert reader.offset == p.stat().st_size


class TestScreen:
    def make(self):
        buf = io.StringIO()
        console = Console(file=buf, width=20, height=5, force_terminal=True, color_system="standard")
        return Screen(console), buf

    def test_size(self):
        screen, _ = self.make()
        caps = screen.size()
        assert (caps.width, caps.height) == (20, 5)

    def test_draw(self):
        screen, buf = self.make()
        screen.draw(["[red]hi[/]", "plain"])
        out = buf.getvalue()
        assert "hi" in out
        assert "plain" in out

    def test_bad_markup_written_plain(self):
        screen, buf = self.make()
        screen.draw(["[/nope]text"])
        assert "text" in buf.getvalue()

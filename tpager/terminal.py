"""Terminal I/O for the pager: raw keys, positioned drawing, file watching."""
from __future__ import annotations

import logging
import os
import select
import sys
import threading
from collections import deque
from pathlib import Path

from rich.console import Console
from rich.control import Control
from rich.errors import MarkupError
from rich.text import Text

from tpager.config import TerminalCaps
from tpager.layout import strip_markup
from tpager.session import decode_line

logger = logging.getLogger(__name__)

IDLE_POLL = 0.05
WATCH_INTERVAL = 0.1

_SEQUENCES = {
    "\x1b[A": "up", "\x1bOA": "up",
    "\x1b[B": "down", "\x1bOB": "down",
    "\x1b[C": "right", "\x1bOC": "right",
    "\x1b[D": "left", "\x1bOD": "left",
    "\x1b[5~": "pgup", "\x1b[6~": "pgdn",
    "\x1b[H": "home", "\x1bOH": "home", "\x1b[1~": "home", "\x1b[7~": "home",
    "\x1b[F": "end", "\x1bOF": "end", "\x1b[4~": "end", "\x1b[8~": "end",
}

_SINGLE = {
    "\r": "enter", "\n": "enter",
    "\x7f": "backspace", "\x08": "backspace",
    "\x03": "ctrl-c",
}


def split_keys(data: str) -> list[str]:
    """Break raw terminal input into key names.

    Printable characters are returned as themselves; escape sequences as
    names like "up" or "pgdn". Unknown sequences are dropped.
    """
    keys = []
    i = 0
    while i < len(data):
        ch = data[i]
        if ch != "\x1b":
            keys.append(_SINGLE.get(ch, ch))
            i += 1
            continue
        if i + 1 >= len(data) or data[i + 1] not in "[O":
            keys.append("esc")
            i += 1
            continue
        # CSI/SS3: runs up to a final byte in @..~
        j = i + 2
        while j < len(data) and not ("@" <= data[j] <= "~"):
            j += 1
        seq = data[i:j + 1]
        name = _SEQUENCES.get(seq)
        if name:
            keys.append(name)
        else:
            logger.debug("unmapped key sequence %r", seq)
        i = j + 1
    return keys


# ── Screen ────────────────────────────────────────────────────────────

class Screen:
    """Alternate-screen terminal in cbreak mode.

    Use as a context manager; the terminal is restored on exit.
    """

    def __init__(self, console: Console | None = None, no_color: bool = False):
        self.console = console or Console(no_color=no_color, highlight=False)
        self._fd: int | None = None
        self._saved = None
        self._pending: deque[str] = deque()

    def __enter__(self) -> Screen:
        import termios
        import tty

        if sys.stdin.isatty():
            self._fd = sys.stdin.fileno()
            self._saved = termios.tcgetattr(self._fd)
            tty.setcbreak(self._fd)
        self.console.set_alt_screen(True)
        self.console.show_cursor(False)
        return self

    def __exit__(self, *exc) -> None:
        import termios

        self.console.show_cursor(True)
        self.console.set_alt_screen(False)
        if self._fd is not None and self._saved is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved)

    def size(self) -> TerminalCaps:
        width, height = self.console.size
        return TerminalCaps(max(width, 1), max(height, 3), not self.console.no_color)

    def read_key(self, timeout: float = IDLE_POLL) -> str | None:
        """Next key name, or None when nothing arrives within *timeout*."""
        if self._pending:
            return self._pending.popleft()
        fd = self._fd if self._fd is not None else sys.stdin.fileno()
        try:
            ready, _, _ = select.select([fd], [], [], timeout)
        except InterruptedError:
            return None
        if not ready:
            return None
        data = os.read(fd, 64).decode("utf-8", errors="replace")
        self._pending.extend(split_keys(data))
        return self._pending.popleft() if self._pending else None

    def draw(self, lines: list[str], full_clear: bool = False) -> None:
        """Write *lines* at rows 0.. (each already fitted to the width)."""
        console = self.console
        with console:
            if full_clear:
                console.clear()
            for row, line in enumerate(lines):
                console.control(Control.move_to(0, row))
                self._write(line)

    def _write(self, line: str) -> None:
        try:
            text = Text.from_markup(line, emoji=False)
        except MarkupError:
            logger.debug("markup failed, writing plain: %r", line)
            text = Text(strip_markup(line))
        try:
            self.console.print(text, end="", no_wrap=True, overflow="crop")
        except UnicodeEncodeError:
            encoding = self.console.encoding
            plain = text.plain.encode(encoding, "replace").decode(encoding)
            self.console.print(plain, end="", markup=False, no_wrap=True, overflow="crop")


# ── Live tail ─────────────────────────────────────────────────────────

class ChangeFlag:
    """File-changed signal set by the watcher and consumed by the render loop."""

    def __init__(self):
        self._lock = threading.Lock()
        self._set = False

    def set(self) -> None:
        with self._lock:
            self._set = True

    def consume(self) -> bool:
        """Test and clear."""
        with self._lock:
            was, self._set = self._set, False
        return was

    def is_set(self) -> bool:
        with self._lock:
            return self._set


class FileWatcher:
    """Background thread that polls a file and sets *flag* when it changes."""

    def __init__(self, path: Path, flag: ChangeFlag, interval: float = WATCH_INTERVAL):
        self.path = Path(path)
        self.flag = flag
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="tpager-watch", daemon=True)
        self._last = self._signature()

    def _signature(self) -> tuple[int, int] | None:
        try:
            st = os.stat(self.path)
        except OSError as e:
            logger.debug("stat %s failed: %s", self.path, e)
            return None
        return st.st_size, st.st_mtime_ns

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            sig = self._signature()
            if sig is not None and sig != self._last:
                self._last = sig
                self.flag.set()

    def start(self) -> FileWatcher:
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(timeout=1)


class TailReader:
    """Reads lines appended to a file after *offset*.

    An unterminated final line is held back until it is completed, unless
    it already decodes as a record.
    """

    def __init__(self, path: Path, offset: int = 0):
        self.path = Path(path)
        self.offset = offset
        self.partial = b""

    def read_lines(self) -> list[str]:
        size = os.stat(self.path).st_size
        if size < self.offset:
            # Rewritten in place; earlier content is already in the model
            logger.info("%s shrank from %d to %d bytes", self.path, self.offset, size)
            self.offset = size
            self.partial = b""
            return []
        if size == self.offset:
            return []
        with open(self.path, "rb") as f:
            f.seek(self.offset)
            data = f.read()
        self.offset += len(data)
        chunks = (self.partial + data).split(b"\n")
        self.partial = chunks.pop()
        lines = [c.decode("utf-8", errors="replace") for c in chunks]
        if self.partial:
            last = self.partial.decode("utf-8", errors="replace")
            if decode_line(last) is not None:
                lines.append(last)
                self.partial = b""
        return lines

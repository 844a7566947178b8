"""Interactive full-screen pager over rendered transcript lines."""
from __future__ import annotations

import enum
import logging
import time
from pathlib import Path
from typing import Callable

from rich.markup import escape

from tpager.config import FILTERS, TerminalCaps, ViewConfig
from tpager.formatters.human import build_info_bar, render_content_lines, render_header_lines
from tpager.layout import (
    balance_markup, pad_visible, skip_markup_width, strip_markup,
    truncate_markup_to_width, visible_width,
)
from tpager.parsers import append_native_lines
from tpager.session import NATIVE, SessionLog, Transcript
from tpager.terminal import IDLE_POLL, ChangeFlag, FileWatcher, TailReader

logger = logging.getLogger(__name__)

FILTER_CYCLE: tuple[str | None, ...] = (None,) + FILTERS
PAN_STEP = 8
RELOAD_INTERVAL = 0.1
ANCHOR_WINDOW = 5


class PagerAction(enum.Enum):
    QUIT = "quit"
    BROWSE = "browse"
    RESUME = "resume"


def fit_line(markup: str, width: int, scroll_x: int = 0) -> str:
    """Shift by *scroll_x* columns, then cut with an ellipsis or pad to *width*."""
    if scroll_x > 0:
        markup = skip_markup_width(markup, scroll_x)
    if visible_width(markup) > width:
        return truncate_markup_to_width(markup, width)
    return pad_visible(balance_markup(markup), width)


def is_anchor_line(text: str) -> bool:
    return (bool(text.strip())
            and not text.lstrip().startswith("───")
            and text.strip() != "┃"
            and len(text) > 5)


class Pager:
    """Scroll, filter, search and live-tail one transcript.

    The pager owns no terminal state itself; everything goes through
    *screen* (see tpager.terminal.Screen), which lets tests drive it with
    a fake.
    """

    def __init__(self, transcript: Transcript, config: ViewConfig, screen,
                 path: Path | str | None = None,
                 clock: Callable[[], float] = time.monotonic):
        self.transcript = transcript
        self.screen = screen
        self.clock = clock
        self.no_color = config.no_color
        self.full = config.full
        self.expand_tools = config.expand_tools
        self.filter_index = FILTER_CYCLE.index(config.filter) if config.filter in FILTER_CYCLE else 0

        if path is None and isinstance(transcript, SessionLog):
            path = transcript.path
        self.path = Path(path) if path is not None else None

        self.caps: TerminalCaps = screen.size()
        self.scroll = 0
        self.scroll_x = 0
        self.lines: list[str] = []
        self.plain: list[str] = []
        self.header: list[str] = []

        self.search_mode = False
        self.search_buffer = ""
        self.search_pattern: str | None = None
        self.matches: list[int] = []
        self.match_set: frozenset[int] = frozenset()
        self.match_index = -1

        self.show_info = False
        self.needs_clear = True

        self.following = (
            isinstance(transcript, SessionLog)
            and transcript.dialect == NATIVE
            and self.path is not None
            and not config.no_follow
        )
        self.at_bottom = True
        self.flag = ChangeFlag()
        self.tail = TailReader(self.path, transcript.offset) if self.following else None
        self.last_reload = float("-inf")

        self.rebuild_header()
        self.rebuild()

    # ── State ─────────────────────────────────────────────────────────

    @property
    def filter(self) -> str | None:
        return FILTER_CYCLE[self.filter_index]

    @property
    def viewport_height(self) -> int:
        return max(1, self.caps.height - 2)

    @property
    def max_scroll(self) -> int:
        return max(0, len(self.lines) - self.viewport_height)

    def clamp_scroll(self) -> None:
        self.scroll = max(0, min(self.scroll, self.max_scroll))

    def scroll_to(self, offset: int) -> None:
        self.scroll = offset
        self.clamp_scroll()
        self.at_bottom = self.scroll >= self.max_scroll

    def rebuild_header(self) -> None:
        self.header = render_header_lines(self.transcript, self.caps.width)

    def rebuild(self) -> None:
        """Re-render the body with the current filter and expansion."""
        self.lines = render_content_lines(self.transcript, self.filter, self.expand_tools,
                                          self.full, self.caps.width)
        self.plain = [strip_markup(line) for line in self.lines]
        if self.search_pattern is not None:
            self.find_matches()
        self.clamp_scroll()

    def info_bar(self) -> str:
        bar = build_info_bar(self.transcript, self.path)
        if self.following:
            bar += " ↓ FOLLOWING"
        return bar

    # ── Anchoring ─────────────────────────────────────────────────────

    def capture_anchor(self) -> str | None:
        """Plain text of a distinctive line near the top of the viewport."""
        if self.scroll >= len(self.plain):
            return None
        for text in self.plain[self.scroll:self.scroll + ANCHOR_WINDOW]:
            if is_anchor_line(text):
                return text
        return self.plain[self.scroll]

    def restore_anchor(self, anchor: str | None, old_offset: int, old_count: int) -> int:
        """New offset for *anchor* after a rebuild.

        With several identical lines, the one nearest the proportionally
        scaled old offset wins.
        """
        count = len(self.plain)
        if old_count > 0:
            guess = min(old_offset * count // old_count, max(0, count - 1))
        else:
            guess = old_offset
        if anchor is None:
            return guess
        hits = [i for i, text in enumerate(self.plain) if text == anchor]
        if not hits:
            return guess
        return min(hits, key=lambda i: abs(i - guess))

    def rebuild_anchored(self) -> None:
        anchor = self.capture_anchor()
        old_offset, old_count = self.scroll, len(self.lines)
        self.rebuild()
        self.scroll_to(self.restore_anchor(anchor, old_offset, old_count))

    # ── Search ────────────────────────────────────────────────────────

    def find_matches(self) -> None:
        self.matches = []
        self.match_index = -1
        if self.search_pattern:
            needle = self.search_pattern.casefold()
            self.matches = [i for i, text in enumerate(self.plain) if needle in text.casefold()]
        self.match_set = frozenset(self.matches)

    def jump_to_match(self, index: int) -> None:
        if not self.matches:
            return
        self.match_index = index % len(self.matches)
        self.scroll_to(max(0, self.matches[self.match_index] - self.viewport_height // 3))

    def commit_search(self) -> None:
        self.search_mode = False
        pattern = self.search_buffer
        self.search_buffer = ""
        if not pattern:
            self.clear_search()
            return
        self.search_pattern = pattern
        self.find_matches()
        self.jump_to_match(0)

    def clear_search(self) -> None:
        self.search_pattern = None
        self.matches = []
        self.match_set = frozenset()
        self.match_index = -1

    # ── Keys ──────────────────────────────────────────────────────────

    def handle_key(self, key: str) -> PagerAction | None:
        """Apply one key; returns an action when the pager should exit."""
        if key == "ctrl-c":
            return PagerAction.QUIT
        if self.show_info:
            self.show_info = False
            self.needs_clear = True
            return None
        if self.search_mode:
            self.search_key(key)
            return None

        vh = self.viewport_height
        if key == "q":
            return PagerAction.QUIT
        if key == "esc":
            if self.search_pattern is not None:
                self.clear_search()
                return None
            return PagerAction.QUIT
        if key == "b":
            return PagerAction.BROWSE
        if key == "r":
            return PagerAction.RESUME

        if key in ("up", "k"):
            self.scroll_to(self.scroll - 1)
        elif key in ("down", "j"):
            self.scroll_to(self.scroll + 1)
        elif key == "pgup":
            self.scroll_to(self.scroll - vh)
        elif key in ("pgdn", " "):
            self.scroll_to(self.scroll + vh)
        elif key in ("home", "g"):
            self.scroll = 0
            self.scroll_x = 0
            self.at_bottom = len(self.lines) <= vh
        elif key in ("end", "G"):
            self.scroll = self.max_scroll
            self.at_bottom = True
        elif key in ("left", "h"):
            self.scroll_x = max(0, self.scroll_x - PAN_STEP)
        elif key in ("right", "l"):
            self.scroll_x += PAN_STEP
        elif key == "0":
            self.scroll_x = 0
        elif key == "t":
            self.expand_tools = not self.expand_tools
            self.rebuild_anchored()
        elif key == "f":
            self.filter_index = (self.filter_index + 1) % len(FILTER_CYCLE)
            self.rebuild_anchored()
        elif key == "/":
            self.search_mode = True
            self.search_buffer = ""
        elif key == "n":
            self.jump_to_match(self.match_index + 1)
        elif key == "N":
            self.jump_to_match(self.match_index - 1)
        elif key == "i":
            self.show_info = True
        return None

    def search_key(self, key: str) -> None:
        if key == "esc":
            self.search_mode = False
            self.search_buffer = ""
        elif key == "enter":
            self.commit_search()
        elif key == "backspace":
            self.search_buffer = self.search_buffer[:-1]
        elif len(key) == 1 and key >= " ":
            self.search_buffer += key

    # ── Live tail and resize ──────────────────────────────────────────

    def poll_tail(self) -> bool:
        """Fold appended lines into the model; True when the view changed."""
        if not self.following or not self.flag.is_set():
            return False
        now = self.clock()
        if now - self.last_reload < RELOAD_INTERVAL:
            return False
        self.flag.consume()
        self.last_reload = now
        try:
            lines = self.tail.read_lines()
        except OSError as e:
            logger.debug("tail read of %s failed: %s", self.path, e)
            return False
        added = append_native_lines(self.transcript, lines)
        self.transcript.offset = self.tail.offset
        if not added:
            return False
        logger.debug("appended %d events from %s", added, self.path)
        was_at_bottom = self.scroll >= self.max_scroll
        self.rebuild()
        self.rebuild_header()
        if was_at_bottom and self.at_bottom:
            self.scroll = self.max_scroll
        return True

    def check_resize(self) -> bool:
        caps = self.screen.size()
        if caps[:2] == self.caps[:2]:
            return False
        logger.debug("resize %sx%s -> %sx%s", self.caps.width, self.caps.height,
                     caps.width, caps.height)
        anchor = self.capture_anchor()
        old_offset, old_count = self.scroll, len(self.lines)
        self.caps = caps
        self.rebuild_header()
        self.rebuild()
        self.scroll_to(self.restore_anchor(anchor, old_offset, old_count))
        self.needs_clear = True
        return True

    # ── Drawing ───────────────────────────────────────────────────────

    def highlight(self, index: int) -> str:
        if self.no_color:
            return self.lines[index]
        return f"[on cyan black]{escape(self.plain[index])}[/]"

    def status_text(self) -> str:
        if self.show_info:
            return " Press i or any key to dismiss"
        if self.search_mode:
            return f" Search: {self.search_buffer}_"
        if self.search_pattern is not None and self.matches:
            return (f' Search: "{self.search_pattern}" ({self.match_index + 1}/{len(self.matches)})'
                    " | n/N next/prev | Esc clear")
        current = self.scroll + 1 if self.lines else 0
        col = f" Col {self.scroll_x}+" if self.scroll_x > 0 else ""
        live = ""
        if self.following:
            live = " LIVE" if self.at_bottom else " [new content ↓]"
        return (f" Line {current}/{len(self.lines)}{col} | Filter: {self.filter or 'all'}{live}"
                " | t tools | b browse | r resume | q quit")

    def frame(self) -> list[str]:
        """All rows of the screen, each fitted to the terminal width."""
        width = self.caps.width
        vh = self.viewport_height
        rows = [f"[reverse]{fit_line(' ' + self.info_bar(), width)}[/]"]

        if self.show_info:
            body = self.header[:vh]
            rows.extend(fit_line(line, width) for line in body)
        else:
            end = min(self.scroll + vh, len(self.lines))
            for i in range(self.scroll, end):
                line = self.highlight(i) if i in self.match_set else self.lines[i]
                rows.append(fit_line(line, width, self.scroll_x))
        rows.extend(" " * width for _ in range(vh - (len(rows) - 1)))

        rows.append(f"[reverse]{fit_line(escape(self.status_text()), width)}[/]")
        return rows

    def render(self) -> None:
        self.screen.draw(self.frame(), full_clear=self.needs_clear)
        self.needs_clear = False

    # ── Loop ──────────────────────────────────────────────────────────

    def run(self) -> PagerAction:
        watcher = FileWatcher(self.path, self.flag).start() if self.following else None
        try:
            self.render()
            while True:
                if self.poll_tail():
                    self.render()
                key = self.screen.read_key(IDLE_POLL)
                if key is None:
                    if self.check_resize():
                        self.render()
                    continue
                action = self.handle_key(key)
                if action is not None:
                    return action
                self.render()
        except KeyboardInterrupt:
            return PagerAction.QUIT
        finally:
            if watcher is not None:
                watcher.stop()

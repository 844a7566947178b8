"""Terminal cell widths and markup-aware text layout."""
from __future__ import annotations

import re
import unicodedata
from typing import Iterator

from rich.markup import escape
from rich.text import Text


# ── Cell widths ───────────────────────────────────────────────────────

# BMP code points with default emoji presentation (terminals draw them 2 wide)
_WIDE_BMP_RANGES = (
    (0x231A, 0x231B), (0x23E9, 0x23EC), (0x23F0, 0x23F0), (0x23F3, 0x23F3),
    (0x25AA, 0x25AB), (0x25B6, 0x25B6), (0x25C0, 0x25C0), (0x25FB, 0x25FE),
    (0x2600, 0x2604), (0x260E, 0x260E), (0x2611, 0x2611), (0x2614, 0x2615),
    (0x2618, 0x2618), (0x261D, 0x261D), (0x2620, 0x2620), (0x2622, 0x2623),
    (0x2626, 0x2626), (0x262A, 0x262A), (0x262E, 0x262F), (0x2638, 0x263A),
    (0x2640, 0x2640), (0x2642, 0x2642), (0x2648, 0x2653), (0x265F, 0x2660),
    (0x2663, 0x2663), (0x2665, 0x2666), (0x2668, 0x2668), (0x267B, 0x267B),
    (0x267E, 0x267F), (0x2692, 0x2697), (0x2699, 0x2699), (0x269B, 0x269C),
    (0x26A0, 0x26A1), (0x26AA, 0x26AB), (0x26B0, 0x26B1), (0x26BD, 0x26BE),
    (0x26C4, 0x26C5), (0x26C8, 0x26C8), (0x26CE, 0x26CF), (0x26D1, 0x26D1),
    (0x26D3, 0x26D4), (0x26E9, 0x26EA), (0x26F0, 0x26F5), (0x26F7, 0x26FA),
    (0x26FD, 0x26FD), (0x2702, 0x2702), (0x2705, 0x2705), (0x2708, 0x270D),
    (0x270F, 0x270F), (0x2712, 0x2712), (0x2714, 0x2714), (0x2716, 0x2716),
    (0x271D, 0x271D), (0x2721, 0x2721), (0x2728, 0x2728), (0x2733, 0x2734),
    (0x2744, 0x2744), (0x2747, 0x2747), (0x274C, 0x274C), (0x274E, 0x274E),
    (0x2753, 0x2755), (0x2757, 0x2757), (0x2763, 0x2764), (0x2795, 0x2797),
    (0x27A1, 0x27A1), (0x27B0, 0x27B0), (0x27BF, 0x27BF), (0x2934, 0x2935),
    (0x2B05, 0x2B07), (0x2B1B, 0x2B1C), (0x2B50, 0x2B50), (0x2B55, 0x2B55),
)

_ZERO_WIDTH = frozenset((0xFE0E, 0xFE0F, 0x200B, 0x200C, 0x200D, 0x200E, 0x200F, 0x2060, 0xFEFF))


def is_wide_bmp_emoji(cp: int) -> bool:
    for lo, hi in _WIDE_BMP_RANGES:
        if cp < lo:
            return False
        if cp <= hi:
            return True
    return False


def char_width(ch: str) -> int:
    """Columns a single code point occupies: 0, 1 or 2."""
    cp = ord(ch)
    if cp in _ZERO_WIDTH:
        return 0
    if unicodedata.combining(ch):
        return 0
    if cp >= 0x1100 and (
        cp <= 0x115F                      # Hangul Jamo
        or 0x2E80 <= cp <= 0x9FFF         # CJK
        or 0xF900 <= cp <= 0xFAFF         # CJK compatibility
        or 0xFE30 <= cp <= 0xFE6F         # CJK compatibility forms
        or 0xFF01 <= cp <= 0xFF60         # fullwidth forms
        or cp >= 0x1F000                  # supplementary emoji
    ):
        return 2
    if is_wide_bmp_emoji(cp):
        return 2
    return 1


def cell_width(text: str) -> int:
    """Width of plain text (no markup interpretation)."""
    return sum(char_width(ch) for ch in text)


def truncate_to_width(text: str, max_width: int) -> str:
    """Longest prefix of plain *text* that fits in *max_width* columns."""
    width = 0
    for i, ch in enumerate(text):
        w = char_width(ch)
        if width + w > max_width:
            return text[:i]
        width += w
    return text


# ── Markup tokens ─────────────────────────────────────────────────────
#
# Markup is rich console markup: [style]...[/style] or [/] closes the last.
# A backslash before a tag makes it literal text.

_TAG_RE = re.compile(r"((\\*)\[([a-z#/@][^[]*?)])")


def _tokens(markup: str) -> Iterator[tuple[str, str | None]]:
    """Yield (text, None) for literal runs and ("", tag) for tags."""
    position = 0
    for match in _TAG_RE.finditer(markup):
        full, escapes, tag = match.groups()
        start, end = match.span()
        if start > position:
            yield markup[position:start], None
        if escapes:
            backslashes, escaped = divmod(len(escapes), 2)
            if backslashes:
                yield "\\" * backslashes, None
            if escaped:
                yield full[len(escapes):], None
                position = end
                continue
        yield "", tag
        position = end
    if position < len(markup):
        yield markup[position:], None


def _tag_name(tag: str) -> str:
    return " ".join(tag.partition("=")[0].lower().split())


class _Builder:
    """Accumulates text and tags, tracking open tags so output stays balanced."""

    __slots__ = ("parts", "open")

    def __init__(self, open_tags: list[str] | None = None):
        self.parts: list[tuple[str, bool]] = []
        self.open: list[str] = []
        for tag in open_tags or ():
            self.tag(tag)

    def text(self, text: str) -> None:
        if text:
            self.parts.append((text, False))

    def tag(self, tag: str) -> None:
        """Apply a tag; closers with nothing to close are dropped."""
        if tag.startswith("/"):
            name = _tag_name(tag[1:])
            if not name:
                if not self.open:
                    return
                self.open.pop()
            else:
                for idx in range(len(self.open) - 1, -1, -1):
                    if _tag_name(self.open[idx]) == name:
                        del self.open[idx]
                        break
                else:
                    return
        else:
            self.open.append(tag)
        self.parts.append((tag, True))

    def close_all(self) -> None:
        while self.open:
            self.open.pop()
            self.parts.append(("/", True))

    def markup(self) -> str:
        out = []
        for idx, (value, is_tag) in enumerate(self.parts):
            if is_tag:
                out.append(f"[{value}]")
                continue
            s = escape(value)
            run = len(value) - len(value.rstrip("\\"))
            if run == 1:
                # escape() pads a lone trailing backslash
                s = s[:-1]
            # A trailing backslash run would escape the following tag
            if run and idx + 1 < len(self.parts) and self.parts[idx + 1][1]:
                s += "\\" * run
            out.append(s)
        return "".join(out)


# ── Markup-aware operations ───────────────────────────────────────────

def strip_markup(markup: str) -> str:
    """Plain text of *markup* with tags removed and escapes resolved."""
    return "".join(text for text, tag in _tokens(markup) if tag is None)


def visible_width(markup: str) -> int:
    """Rendered column width; tags contribute nothing."""
    return cell_width(strip_markup(markup))


def balance_markup(markup: str) -> str:
    """Drop stray closers and close any tags left open."""
    b = _Builder()
    for text, tag in _tokens(markup):
        if tag is None:
            b.text(text)
        else:
            b.tag(tag)
    b.close_all()
    return b.markup()


def truncate_markup_to_width(markup: str, max_width: int) -> str:
    """Cut *markup* to *max_width* visible columns.

    When anything is cut, an ellipsis is placed inside the innermost open
    style. Open tags are always closed.
    """
    if max_width <= 0:
        return ""
    if visible_width(markup) <= max_width:
        return balance_markup(markup)
    budget = max_width - 1
    b = _Builder()
    width = 0
    done = False
    for text, tag in _tokens(markup):
        if tag is not None:
            b.tag(tag)
            continue
        for i, ch in enumerate(text):
            w = char_width(ch)
            if width + w > budget:
                b.text(text[:i])
                done = True
                break
            width += w
        else:
            b.text(text)
        if done:
            break
    b.text("…")
    b.close_all()
    return b.markup()


def skip_markup_width(markup: str, columns: int) -> str:
    """Drop the first *columns* visible columns, keeping active styles."""
    if columns <= 0:
        return balance_markup(markup)
    skipped = 0
    stack = _Builder()
    rest: _Builder | None = None
    for text, tag in _tokens(markup):
        if rest is not None:
            if tag is None:
                rest.text(text)
            else:
                rest.tag(tag)
            continue
        if tag is not None:
            stack.tag(tag)
            continue
        for i, ch in enumerate(text):
            if skipped >= columns:
                rest = _Builder(stack.open)
                rest.text(text[i:])
                break
            skipped += char_width(ch)
        else:
            if skipped >= columns:
                rest = _Builder(stack.open)
    if rest is None:
        return ""
    rest.close_all()
    return rest.markup()


def literal(text: str) -> str:
    """Markup that renders exactly *text*."""
    b = _Builder()
    b.text(text)
    return b.markup()


def styled(style: str, text: str) -> str:
    """Literal *text* wrapped in one style tag."""
    b = _Builder()
    b.tag(style)
    b.text(text)
    b.close_all()
    return b.markup()


def text_markup(text: Text) -> str:
    """Serialize a rich Text (spans) into balanced markup."""
    plain = text.plain
    marks = [(0, False, text.style), (len(plain), True, text.style)]
    for span in text.spans:
        marks.append((span.start, False, span.style))
        marks.append((span.end, True, span.style))
    marks.sort(key=lambda m: (m[0], m[1]))
    b = _Builder()
    position = 0
    for offset, closing, style in marks:
        if offset > position:
            b.text(plain[position:offset])
            position = offset
        if style:
            b.tag(f"/{style}" if closing else str(style))
    b.close_all()
    return b.markup()


def pad_visible(markup: str, width: int) -> str:
    pad = width - visible_width(markup)
    return markup + " " * pad if pad > 0 else markup


def split_lines(text: str) -> list[str]:
    """Split on CRLF, CR or LF, keeping empty lines."""
    return re.split(r"\r\n|\r|\n", text)


# ── Time and size formatting ──────────────────────────────────────────

def format_relative_time(seconds: float) -> str:
    """Elapsed offset such as +0.0s, +12.3s, +4m 5s, +1h 30m."""
    if seconds < 0.1:
        return "+0.0s"
    if seconds < 60:
        return f"+{seconds:.1f}s"
    whole = int(seconds)
    if seconds < 3600:
        return f"+{whole // 60}m {whole % 60}s"
    return f"+{whole // 3600}h {whole // 60 % 60}m"


def format_duration(seconds: float) -> str:
    whole = int(max(seconds, 0))
    if whole < 60:
        return f"{whole}s"
    if whole < 3600:
        return f"{whole // 60}m {whole % 60}s"
    return f"{whole // 3600}h {whole // 60 % 60}m"


def format_size(n: int) -> str:
    if n < 1024:
        return f"{n}B"
    if n < 1024 * 1024:
        return f"{n // 1024}KB"
    return f"{n / (1024 * 1024):.1f}MB"


def format_age(seconds: float) -> str:
    if seconds < 60:
        return "now"
    if seconds < 3600:
        return f"{int(seconds // 60)}m"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h"
    days = int(seconds // 86400)
    if days < 30:
        return f"{days}d"
    return f"{days // 30}mo"

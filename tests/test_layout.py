"""Tests for tpager.layout — widths, markup-aware cutting, formatting."""
from __future__ import annotations

import pytest
from rich.text import Text

from tpager.layout import (
    balance_markup, cell_width, char_width, format_age, format_duration, format_relative_time,
    format_size, literal, pad_visible, skip_markup_width, split_lines, strip_markup,
    styled, text_markup, truncate_markup_to_width, truncate_to_width, visible_width,
)


class TestWidths:
    def test_ascii(self):
        assert cell_width("hello") == 5

    def test_cjk_is_wide(self):
        assert visible_width("A世B") == 4

    def test_supplementary_emoji(self):
        assert char_width("😀") == 2

    def test_bmp_emoji_presentation(self):
        assert char_width("☕") == 2
        assert char_width("✅") == 2

    def test_plain_symbols_are_narrow(self):
        assert char_width("─") == 1
        assert char_width("┃") == 1

    def test_zero_width(self):
        assert char_width("\u200d") == 0
        assert char_width("\ufe0f") == 0

    def test_combining_marks(self):
        assert char_width("\u0301") == 0
        assert visible_width("e\u0301") == 1
        assert truncate_to_width("e\u0301xyz", 2) == "e\u0301x"

    def test_markup_has_no_width(self):
        assert visible_width("[bold red]hi[/]") == 2
        assert visible_width("[bold]") == 0


class TestTruncateToWidth:
    def test_short_is_noop(self):
        assert truncate_to_width("abc", 10) == "abc"

    def test_cuts(self):
        assert truncate_to_width("hello", 3) == "hel"

    def test_never_splits_wide_char(self):
        assert truncate_to_width("世界x", 3) == "世"

    @pytest.mark.parametrize("text", ["hello world", "世界世界", "a😀b😀c"])
    def test_bound(self, text):
        for n in range(8):
            assert cell_width(truncate_to_width(text, n)) <= n


class TestStripMarkup:
    def test_removes_tags(self):
        assert strip_markup("[bold]hi[/] [red]there[/red]") == "hi there"

    def test_escaped_tag_is_text(self):
        assert strip_markup("\\[bold] x") == "[bold] x"

    def test_non_tag_brackets_kept(self):
        assert strip_markup("list[0] = [1, 2]") == "list[0] = [1, 2]"


class TestBalance:
    def test_closes_open(self):
        assert balance_markup("[bold]hi") == "[bold]hi[/]"

    def test_drops_stray_closer(self):
        assert balance_markup("hi[/]") == "hi"

    def test_named_closer(self):
        assert balance_markup("[red]a[/red]b") == "[red]a[/red]b"


class TestTruncateMarkup:
    def test_fits(self):
        assert truncate_markup_to_width("[red]hi[/]", 5) == "[red]hi[/]"

    def test_ellipsis_inside_style(self):
        assert truncate_markup_to_width("[red]hello world[/]", 5) == "[red]hell…[/]"

    def test_width_bound(self):
        out = truncate_markup_to_width("[b]世界世界[/b]", 5)
        assert visible_width(out) <= 5
        assert strip_markup(out) == "世界…"

    def test_zero(self):
        assert truncate_markup_to_width("[red]x[/]", 0) == ""

    def test_closes_tags_opened_before_cut(self):
        out = truncate_markup_to_width("[bold]abc [italic]defgh", 6)
        assert out.count("[/]") == 2
        assert strip_markup(out) == "abc d…"


class TestSkipMarkup:
    def test_keeps_active_style(self):
        assert skip_markup_width("[bold]abcdef[/]", 2) == "[bold]cdef[/]"

    def test_skip_everything(self):
        assert skip_markup_width("abc", 5) == ""
        assert skip_markup_width("abc", 3) == ""

    def test_zero_is_balance(self):
        assert skip_markup_width("[red]ab", 0) == "[red]ab[/]"

    def test_wide_chars(self):
        assert strip_markup(skip_markup_width("世界x", 2)) == "界x"


class TestBuilders:
    @pytest.mark.parametrize("text", ["[bold]", "a [b] c", "C:\\path\\", "x\\[y]", ""])
    def test_literal_renders_exactly(self, text):
        assert strip_markup(literal(text)) == text

    def test_styled_trailing_backslash(self):
        out = styled("red", "x\\")
        assert strip_markup(out) == "x\\"
        assert out.startswith("[red]")
        assert out.endswith("[/]")

    def test_text_markup_spans(self):
        text = Text("hello world")
        text.stylize("bold", 0, 5)
        assert text_markup(text) == "[bold]hello[/bold] world"

    def test_text_markup_escapes(self):
        assert strip_markup(text_markup(Text("[not a tag]"))) == "[not a tag]"

    def test_pad_visible(self):
        assert pad_visible("[red]ab[/]", 4) == "[red]ab[/]  "
        assert pad_visible("abcdef", 4) == "abcdef"


class TestFormatting:
    def test_split_lines(self):
        assert split_lines("a\r\nb\rc\n") == ["a", "b", "c", ""]

    @pytest.mark.parametrize("seconds,expected", [
        (0.05, "+0.0s"),
        (12.34, "+12.3s"),
        (245, "+4m 5s"),
        (5400, "+1h 30m"),
    ])
    def test_relative_time(self, seconds, expected):
        assert format_relative_time(seconds) == expected

    def test_duration(self):
        assert format_duration(59) == "59s"
        assert format_duration(61) == "1m 1s"

    def test_size(self):
        assert format_size(512) == "512B"
        assert format_size(2048) == "2KB"
        assert format_size(1572864) == "1.5MB"

    def test_age(self):
        assert format_age(5) == "now"
        assert format_age(600) == "10m"
        assert format_age(7200) == "2h"
        assert format_age(3 * 86400) == "3d"
        assert format_age(90 * 86400) == "3mo"

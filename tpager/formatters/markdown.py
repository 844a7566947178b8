"""Markdown to prefixed terminal lines, block by block."""
from __future__ import annotations

from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode
from rich.markup import escape
from rich.text import Text

from tpager.layout import split_lines, strip_markup, text_markup, visible_width

_md = MarkdownIt("commonmark").enable("table").enable("strikethrough")

_INLINE_STYLES = {"em": "italic", "strong": "bold", "s": "strike"}


# ── Inline runs ───────────────────────────────────────────────────────

def _append_inline(node: SyntaxTreeNode, text: Text) -> None:
    for child in node.children:
        kind = child.type
        if kind == "text" or kind == "html_inline":
            text.append(child.content)
        elif kind in ("softbreak", "hardbreak"):
            text.append("\n")
        elif kind == "code_inline":
            text.append(child.content, "cyan")
        elif kind in _INLINE_STYLES:
            start = len(text)
            _append_inline(child, text)
            text.stylize(_INLINE_STYLES[kind], start, len(text))
        elif kind in ("link", "image"):
            url = str(child.attrs.get("href") or child.attrs.get("src") or "")
            start = len(text)
            _append_inline(child, text)
            if len(text) == start:
                text.append(url)
            text.stylize("underline blue", start, len(text))
            text.append(" ")
            text.append(f"({url})", "dim")
        elif child.children:
            _append_inline(child, text)
        else:
            text.append(child.content)


def _inline_lines(node: SyntaxTreeNode) -> list[str]:
    """Markup per line of a block's inline content."""
    text = Text()
    for child in node.children:
        if child.type == "inline":
            _append_inline(child, text)
    return [text_markup(line) for line in text.split("\n", allow_blank=True)]


# ── Blocks ────────────────────────────────────────────────────────────

class _BlockRenderer:
    __slots__ = ("color", "source", "lines")

    def __init__(self, color: str, source: list[str]):
        self.color = color
        self.source = source
        self.lines: list[str] = []

    def add(self, prefix: str, body: str = "", style: str = "") -> None:
        style = f"{self.color} {style}" if style else self.color
        self.lines.append(f"[{style}]{escape(prefix)}{body}[/]")

    def blank(self, prefix: str) -> None:
        self.add(prefix.rstrip())

    def block(self, node: SyntaxTreeNode, prefix: str, depth: int) -> None:
        kind = node.type
        if kind == "heading":
            marker = "#" * int(node.tag[1:]) + " "
            self.add(prefix, escape(marker) + " ".join(_inline_lines(node)), "bold")
            self.blank(prefix)
        elif kind == "paragraph":
            for line in _inline_lines(node):
                self.add(prefix, line)
            self.blank(prefix)
        elif kind == "fence":
            self.add(prefix, escape("```" + node.info), "dim")
            for line in _code_lines(node.content):
                self.add(prefix, "  " + escape(line), "dim")
            self.add(prefix, "```", "dim")
            self.blank(prefix)
        elif kind == "code_block":
            for line in _code_lines(node.content):
                self.add(prefix, "  " + escape(line), "dim")
            self.blank(prefix)
        elif kind in ("bullet_list", "ordered_list"):
            self.list(node, prefix, depth)
            self.blank(prefix)
        elif kind == "blockquote":
            for child in node.children:
                self.block(child, prefix + "▎ ", depth)
        elif kind == "hr":
            self.add(prefix, "───", "dim")
        elif kind == "table":
            self.table(node, prefix)
            self.blank(prefix)
        else:
            self.verbatim(node, prefix)

    def list(self, node: SyntaxTreeNode, prefix: str, depth: int) -> None:
        number = int(node.attrs.get("start", 1)) if node.type == "ordered_list" else 0
        indent = "  " * depth
        for item in node.children:
            bullet = f"{number}. " if node.type == "ordered_list" else "• "
            number += 1
            hang = " " * visible_width(bullet)
            for idx, sub in enumerate(item.children):
                if idx == 0 and sub.type == "paragraph":
                    for n, line in enumerate(_inline_lines(sub)):
                        self.add(prefix + indent + (bullet if n == 0 else hang), line)
                else:
                    self.block(sub, prefix + indent + hang, depth + 1)

    def table(self, node: SyntaxTreeNode, prefix: str) -> None:
        rows: list[list[str]] = []
        for section in node.children:
            for tr in section.children:
                cells = [" ".join(_inline_lines(cell)) for cell in tr.children]
                if cells:
                    rows.append(cells)
        if not rows:
            return
        ncols = max(len(r) for r in rows)
        widths = [3] * ncols
        for row in rows:
            for c, cell in enumerate(row):
                widths[c] = max(widths[c], visible_width(cell))
        for r, row in enumerate(rows):
            parts = []
            for c in range(ncols):
                cell = row[c] if c < len(row) else ""
                parts.append(cell + " " * (widths[c] - visible_width(cell)))
            self.add(prefix, " | ".join(parts))
            if r == 0:
                self.add(prefix, " | ".join("-" * w for w in widths), "dim")

    def verbatim(self, node: SyntaxTreeNode, prefix: str) -> None:
        if node.map:
            start, end = node.map
            body = self.source[start:end]
        else:
            body = split_lines(node.content) if node.content else []
        for line in body:
            self.add(prefix, escape(line))


def _code_lines(content: str) -> list[str]:
    if content.endswith("\n"):
        content = content[:-1]
    return split_lines(content) if content else []


def render_markdown_lines(text: str, color: str, prefix: str = "┃ ") -> list[str]:
    """Render markdown *text* as markup lines, each starting with *prefix*."""
    if not text:
        return [f"[{color}]{escape(prefix)}[/]"]
    tree = SyntaxTreeNode(_md.parse(text))
    r = _BlockRenderer(color, split_lines(text))
    for node in tree.children:
        r.block(node, prefix, 0)

    # Collapse runs of bare-prefix lines
    bare = prefix.strip()
    out: list[str] = []
    last_blank = False
    for line in r.lines:
        is_blank = strip_markup(line).strip() == bare
        if is_blank and last_blank:
            continue
        out.append(line)
        last_blank = is_blank
    return out

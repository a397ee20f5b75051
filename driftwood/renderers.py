"""Content renderers for Driftwood.

Each renderer turns one source type into HTML after the Jinja pass:

- MarkdownRenderer: Markdown to HTML with mistune, heading anchors and a
  pluggable code highlighter.
- PassthroughRenderer: Jinja and HTML pages, whose output is already HTML.
"""

from __future__ import annotations

import re
from collections.abc import Callable

import mistune

from .highlight import plain_code_block

CodeHighlighter = Callable[[str, "str | None"], str]


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text."""
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


class _BlogRenderer(mistune.HTMLRenderer):
    """mistune renderer adding heading anchors and code highlighting.

    Raw HTML is kept as-is so shortcode output survives the Markdown pass.
    """

    def __init__(self, highlighter: CodeHighlighter | None = None):
        super().__init__(escape=False)
        self.highlighter = highlighter
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = _generate_heading_id(text)
        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        lang = info.split()[0] if info and info.strip() else None
        if self.highlighter is not None:
            return self.highlighter(code, lang)
        return plain_code_block(code, lang)


class MarkdownRenderer:
    """Renders Markdown content to HTML."""

    source_type = "markdown"

    def __init__(self, highlighter: CodeHighlighter | None = None):
        self.highlighter = highlighter

    def render(self, content: str) -> str:
        markdown = mistune.create_markdown(
            renderer=_BlogRenderer(self.highlighter),
            plugins=["strikethrough", "footnotes", "table", "url"],
        )
        return markdown(content)


class PassthroughRenderer:
    """Returns already-rendered HTML unchanged."""

    def __init__(self, source_type: str):
        self.source_type = source_type

    def render(self, content: str) -> str:
        return content


class RendererRegistry:
    """Maps source types to renderers."""

    def __init__(self, highlighter: CodeHighlighter | None = None):
        self._renderers: dict[str, object] = {}
        self.register(MarkdownRenderer(highlighter))
        self.register(PassthroughRenderer("jinja"))
        self.register(PassthroughRenderer("html"))

    def register(self, renderer) -> None:
        self._renderers[renderer.source_type] = renderer

    def get_renderer(self, source_type: str):
        return self._renderers.get(source_type)

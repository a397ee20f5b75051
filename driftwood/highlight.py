"""Syntax highlighting plugin for Driftwood.

Installs Pygments highlighting for fenced code blocks in Markdown, a
``highlight`` Jinja filter for templates, and a ``highlight_css`` global that
returns the matching stylesheet.

Usage in a template:

    {% filter highlight("python") %}print("hi"){% endfilter %}
    <style>{{ highlight_css() }}</style>
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from markupsafe import Markup, escape
from pygments import highlight as pygments_highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

if TYPE_CHECKING:
    from .site import SiteConfig


class PygmentsHighlighter:
    """Highlights code with Pygments, falling back to escaped plain blocks.

    Attributes:
        css_class: Wrapper class on the generated ``<div>``.
        style: Pygments style name used for ``css()``.
    """

    def __init__(self, css_class: str = "highlight", style: str = "default"):
        self.css_class = css_class
        self.style = style

    def __call__(self, code: str, lang: str | None = None) -> str:
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                formatter = HtmlFormatter(cssclass=self.css_class)
                return pygments_highlight(code, lexer, formatter)
        return plain_code_block(code, lang)

    def css(self) -> str:
        return HtmlFormatter(style=self.style).get_style_defs(f".{self.css_class}")


def plain_code_block(code: str, lang: str | None = None) -> str:
    lang_class = f' class="language-{escape(lang)}"' if lang else ""
    return f"<pre><code{lang_class}>{escape(code)}</code></pre>\n"


def syntax_highlight(config: SiteConfig, css_class: str = "highlight", style: str = "default") -> None:
    """Plugin entry point: wire Pygments into Markdown and templates."""
    highlighter = PygmentsHighlighter(css_class=css_class, style=style)
    config.code_highlighter = highlighter
    config.add_filter("highlight", lambda code, lang=None: Markup(highlighter(str(code), lang)))
    config.add_global("highlight_css", lambda: Markup(highlighter.css()))

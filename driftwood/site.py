"""Build configuration root for Driftwood.

``SiteConfig`` holds the generator's extension points: collections,
shortcodes, filters, globals, layout aliases and plugins. ``configure`` wires
the blog into them: the ``posts`` collection, the async ``image`` shortcode,
the ``default`` and ``post`` layout aliases and syntax highlighting, with
Jinja as the template dialect for Markdown bodies.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from .collections import CollectionRegistry, posts_collection
from .highlight import syntax_highlight
from .images import ImageShortcode
from .layouts import LayoutAliasTable
from .renderers import CodeHighlighter


class SiteConfig:
    """Extension points consulted by the template engine and build.

    Attributes:
        project_root: Root directory of the project.
        output_dir: Directory the current build writes into.
        settings: Merged driftwood.yaml settings.
        collections: Registry of named collection functions.
        shortcodes: Sync shortcodes by name.
        async_shortcodes: Async shortcodes by name.
        filters: Jinja filters by name.
        globals: Jinja globals by name.
        layout_aliases: Layout alias table.
        markdown_template_engine: "jinja" to pre-process Markdown with Jinja,
            None to render Markdown as-is.
        code_highlighter: Callable used for fenced code blocks.
    """

    def __init__(self, project_root: Path, output_dir: Path, settings: dict[str, Any]):
        self.project_root = project_root
        self.output_dir = output_dir
        self.settings = settings
        self.collections = CollectionRegistry()
        self.shortcodes: dict[str, Callable[..., Any]] = {}
        self.async_shortcodes: dict[str, Callable[..., Any]] = {}
        self.filters: dict[str, Callable[..., Any]] = {}
        self.globals: dict[str, Any] = {}
        self.layout_aliases = LayoutAliasTable()
        self.markdown_template_engine: str | None = "jinja"
        self.code_highlighter: CodeHighlighter | None = None

    def add_collection(self, name: str, fn: Callable) -> None:
        self.collections.add(name, fn)

    def add_shortcode(self, name: str, fn: Callable[..., Any]) -> None:
        self.shortcodes[name] = fn

    def add_async_shortcode(self, name: str, fn: Callable[..., Any]) -> None:
        self.async_shortcodes[name] = fn

    def add_filter(self, name: str, fn: Callable[..., Any]) -> None:
        self.filters[name] = fn

    def add_global(self, name: str, value: Any) -> None:
        self.globals[name] = value

    def add_layout_alias(self, alias: str, template: str) -> None:
        self.layout_aliases.add(alias, template)

    def add_plugin(self, plugin: Callable[..., None], **options: Any) -> None:
        plugin(self, **options)

    def all_shortcodes(self) -> dict[str, Callable[..., Any]]:
        return {**self.shortcodes, **self.async_shortcodes}


def image_shortcode_for(config: SiteConfig) -> ImageShortcode:
    images = config.settings.get("images", {})
    return ImageShortcode(
        config.project_root,
        output_dir=config.output_dir / images.get("output", "img"),
        widths=images.get("widths", [400, 800, 1000, 1200, 1450]),
        formats=images.get("formats", ["webp", "jpeg"]),
        url_path=images.get("url_path", "/img/"),
        cache_dir=config.project_root / images.get("cache_dir", ".cache/img"),
        concurrency=images.get("concurrency", 4),
    )


def configure(config: SiteConfig) -> SiteConfig:
    """Register the blog's collections, shortcodes, layouts and plugins."""
    config.add_collection("posts", posts_collection)
    config.add_async_shortcode("image", image_shortcode_for(config))

    for alias, template in config.settings.get("layouts", {}).items():
        config.add_layout_alias(alias, template)

    highlight = config.settings.get("highlight", {})
    config.add_plugin(
        syntax_highlight,
        css_class=highlight.get("css_class", "highlight"),
        style=highlight.get("style", "default"),
    )

    config.markdown_template_engine = "jinja"
    return config

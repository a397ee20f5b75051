"""Template rendering engine for Driftwood.

This module uses Jinja2 in async mode to render pages. Markdown bodies are
Jinja templates first (the Markdown template dialect), so shortcodes such as
``image`` can suspend the render while their work completes. The rendered
body is converted to HTML and wrapped in its layout chain.

Shortcodes are available two ways:

    {{ image("img/cat.jpg", "A cat", "100vw") }}
    {% image "img/cat.jpg", "A cat", "100vw" %}

Key classes:
- TemplateEngine: Renders pages through their layouts.
- FrontMatterLoader: Loads templates with their front matter stripped.
- ShortcodeExtension: Tag syntax for registered shortcodes.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, nodes, select_autoescape
from jinja2.ext import Extension
from markupsafe import Markup

from .collections import PageCollection
from .content import Page
from .extractors import extract_frontmatter
from .layouts import LayoutResolver
from .renderers import RendererRegistry
from .site import SiteConfig
from .utils import join_root_url

__all__ = ["FrontMatterLoader", "ShortcodeExtension", "TemplateEngine"]


class FrontMatterLoader(FileSystemLoader):
    """FileSystemLoader that strips a leading front matter block."""

    def get_source(self, environment: Environment, template: str):
        source, filename, uptodate = super().get_source(environment, template)
        _, body = extract_frontmatter(source, Path(filename))
        return body, filename, uptodate


async def _call_shortcode(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Markup:
    result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return Markup("") if result is None else Markup(result)


class ShortcodeExtension(Extension):
    """Parses ``{% name arg, arg, ... %}`` into a shortcode call.

    ``tags`` is filled in per engine by ``shortcode_extension``.
    """

    tags: set[str] = set()

    def __init__(self, environment: Environment):
        super().__init__(environment)
        environment.extend(shortcodes={})

    def parse(self, parser):
        token = next(parser.stream)
        args = []
        while parser.stream.current.type != "block_end":
            if args:
                parser.stream.expect("comma")
            args.append(parser.parse_expression())
        call = self.call_method(
            "_invoke", [nodes.Const(token.value), nodes.List(args)], lineno=token.lineno
        )
        return nodes.Output([call], lineno=token.lineno)

    async def _invoke(self, name: str, args: list[Any]) -> Markup:
        return await _call_shortcode(self.environment.shortcodes[name], *args)


def shortcode_extension(names: list[str]) -> type[ShortcodeExtension]:
    return type("BoundShortcodeExtension", (ShortcodeExtension,), {"tags": set(names)})


class TemplateEngine:
    """Renders pages with Jinja2 and the site's extension points.

    Attributes:
        input_dir: Directory containing content.
        includes_dir: Directory containing layouts and partials.
        site: Build configuration root.
        data: Global template data.
        env: Async Jinja2 environment.
        layouts: Layout resolver backed by the alias table.
        renderers: Registry of post-Jinja renderers.
        collections: Named page collections for templates.
    """

    def __init__(
        self,
        input_dir: Path,
        includes_dir: Path,
        site: SiteConfig,
        data: dict[str, Any],
        root_url: str = "",
    ):
        self.input_dir = input_dir
        self.includes_dir = includes_dir
        self.site = site
        self.data = data
        self.root_url = root_url or ""
        shortcodes = site.all_shortcodes()
        self.env = Environment(
            loader=FrontMatterLoader([str(includes_dir), str(input_dir)]),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
            enable_async=True,
            extensions=[shortcode_extension(list(shortcodes))],
        )
        self.env.shortcodes.update(shortcodes)
        self.layouts = LayoutResolver(includes_dir, site.layout_aliases)
        self.renderers = RendererRegistry(site.code_highlighter)
        self.collections: dict[str, PageCollection] = {}
        self._install_globals(shortcodes)

    def _install_globals(self, shortcodes: Mapping[str, Callable[..., Any]]) -> None:
        self.env.globals.update(self.data)
        self.env.globals["data"] = self.data
        self.env.globals["collections"] = self.collections
        self.env.globals["url_for"] = self.url_for
        self.env.globals.update(self.site.globals)
        for name, fn in shortcodes.items():
            self.env.globals[name] = self._shortcode_global(fn)
        self.env.filters.update(self.site.filters)

    @staticmethod
    def _shortcode_global(fn: Callable[..., Any]) -> Callable[..., Any]:
        async def call(*args: Any, **kwargs: Any) -> Markup:
            return await _call_shortcode(fn, *args, **kwargs)

        return call

    def update_collections(self, collections: Mapping[str, PageCollection]) -> None:
        self.collections.clear()
        self.collections.update(collections)

    def url_for(self, path: str) -> str:
        """Generate a URL for a path, applying root_url if configured."""
        if path.startswith(("http://", "https://", "//")):
            return path
        path = path if path.startswith("/") else f"/{path}"
        return join_root_url(self.root_url, path) if self.root_url else path

    def uses_template_engine(self, page: Page) -> bool:
        if page.source_type == "jinja":
            return True
        if page.source_type != "markdown":
            return False
        if page.frontmatter.get("template_engine_override") == "md":
            return False
        return self.site.markdown_template_engine == "jinja"

    def context_for(self, page: Page) -> dict[str, Any]:
        context = page.data
        context["page"] = page
        return context

    async def render_content(self, page: Page, context: dict[str, Any]) -> str:
        """Render a page body to HTML, without layouts."""
        source = page.body
        if self.uses_template_engine(page):
            template = self.env.from_string(source)
            source = await template.render_async(context)
        renderer = self.renderers.get_renderer(page.source_type)
        return renderer.render(source)

    async def render_page(self, page: Page) -> str:
        """Render a page and wrap it in its layout chain.

        Raises:
            LayoutNotFoundError: If the page's layout cannot be resolved.
        """
        chain = self.layouts.chain(page.layout)
        layout_data: dict[str, Any] = {}
        for layout in reversed(chain):
            layout_data.update(layout.frontmatter)
        context = {**layout_data, **self.context_for(page)}

        html = await self.render_content(page, context)
        page.content = html
        for layout in chain:
            template = self.env.get_template(layout.template)
            html = await template.render_async({**context, "content": Markup(html)})
        return html

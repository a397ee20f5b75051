"""Content discovery and the Page model for Driftwood.

This module finds source files under the input directory, reads their
metadata and builds ``Page`` objects. Rendering happens later in the
template engine, because Markdown bodies are Jinja templates that may call
asynchronous shortcodes.

Key classes:
- Page: Dataclass representing one source document.
- FileContentLoader: Discovers content files in path-lexical order.
- UrlDeriver: Derives URLs and output paths from paths or permalinks.
- DefaultPageBuilder: Builds Page objects from files.
- ContentProcessor: Facade tying the loader and builder together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any

from .extractors import CompositeMetadataExtractor, default_metadata_extractor
from .utils import is_html, is_markdown, is_template, matches_glob, slugify

SKIPPED_DIRS = {"node_modules"}


@dataclass
class Page:
    """Represents a site page with all its metadata and content.

    Attributes:
        path: Path to the source file.
        input_path: Posix path relative to the input directory.
        url: URL path for the page, or None when it is not written.
        output_path: Posix path of the written file relative to the output dir.
        slug: URL-friendly slug.
        title: Human-readable title.
        description: Short description, often from the first paragraph.
        date: Publication date.
        hidden: True only when front matter says ``hidden: true``.
        layout: Layout name from front matter (alias or template path).
        frontmatter: Raw front matter mapping.
        body: Source text with the front matter removed.
        content: Rendered HTML body, filled in by the template engine.
        source_type: "markdown", "jinja" or "html".
    """

    path: Path
    input_path: str
    url: str | None
    output_path: str | None
    slug: str
    title: str
    description: str
    date: datetime
    hidden: bool
    layout: str | None
    body: str
    source_type: str
    frontmatter: dict[str, Any] = field(default_factory=dict)
    content: str = ""

    @property
    def data(self) -> dict[str, Any]:
        """Front matter merged with the derived fields, for templates."""
        merged = dict(self.frontmatter)
        merged.update(
            title=self.title,
            description=self.description,
            date=self.date,
            url=self.url,
            slug=self.slug,
            hidden=self.hidden,
            input_path=self.input_path,
        )
        return merged


class FileContentLoader:
    """Discovers content files under the input directory.

    Attributes:
        input_dir: Directory containing site content.
        excluded: Directories that never hold content (includes, data,
            output, cache).
        ignore: Globs of files that are not content, such as README.md.
    """

    def __init__(
        self,
        input_dir: Path,
        excluded: list[Path] | None = None,
        ignore: list[str] | None = None,
    ):
        self.input_dir = input_dir
        self.excluded = [p.resolve() for p in (excluded or [])]
        self.ignore = list(ignore or [])

    def iter_files(self) -> list[Path]:
        """Return all content files, sorted by their relative posix path."""
        files: list[Path] = []
        for path in self.input_dir.rglob("*"):
            if path.is_dir():
                continue
            rel = path.relative_to(self.input_dir)
            if any(part.startswith(".") or part in SKIPPED_DIRS for part in rel.parts[:-1]):
                continue
            if self._is_excluded(path) or any(matches_glob(rel.as_posix(), g) for g in self.ignore):
                continue
            if is_markdown(path) or is_template(path) or is_html(path):
                files.append(path)
        files.sort(key=lambda p: p.relative_to(self.input_dir).as_posix())
        return files

    def _is_excluded(self, path: Path) -> bool:
        resolved = path.resolve()
        for excluded in self.excluded:
            try:
                resolved.relative_to(excluded)
                return True
            except ValueError:
                continue
        return False


class UrlDeriver:
    """Derives URLs and output paths for pages.

    A ``permalink`` in front matter wins; ``permalink: false`` means the page
    is loaded (and can appear in collections) but never written. Otherwise
    the URL follows the source path with leading underscores stripped from
    directory names, so ``_posts/hello.md`` becomes ``/posts/hello/``.
    """

    def derive(self, rel: PurePosixPath, slug: str, permalink: Any = None) -> tuple[str | None, str | None]:
        """Return ``(url, output_path)`` for a page.

        Args:
            rel: Relative posix path from the input directory.
            slug: URL-friendly slug.
            permalink: Optional front matter permalink.
        """
        if permalink is False:
            return None, None
        if permalink:
            url = "/" + str(permalink).strip().lstrip("/")
        else:
            segments = [part.lstrip("_") or part for part in rel.parent.parts]
            if rel.name.split(".")[0] != "index":
                segments.append(slug)
            path = "/".join(segments)
            url = f"/{path}/" if path else "/"
        return url, self.output_path_for(url)

    @staticmethod
    def output_path_for(url: str) -> str:
        """Map a URL to a file path relative to the output directory."""
        trimmed = url.strip("/")
        if trimmed and "." in PurePosixPath(trimmed).name and not url.endswith("/"):
            return trimmed
        return f"{trimmed}/index.html" if trimmed else "index.html"


class DefaultPageBuilder:
    """Builds Page objects from source files.

    Attributes:
        input_dir: Directory containing site content.
        metadata_extractor: Composite metadata extractor.
        url_deriver: URL deriver instance.
    """

    def __init__(
        self,
        input_dir: Path,
        metadata_extractor: CompositeMetadataExtractor | None = None,
    ):
        self.input_dir = input_dir
        self.metadata_extractor = metadata_extractor or default_metadata_extractor
        self.url_deriver = UrlDeriver()

    def build(self, path: Path) -> Page:
        """Build a Page object from a source file.

        Raises:
            FrontMatterError: If the front matter block is malformed.
        """
        rel = PurePosixPath(path.relative_to(self.input_dir).as_posix())
        raw = path.read_text(encoding="utf-8")
        metadata = self.metadata_extractor.extract(raw, path)
        frontmatter = metadata.get("frontmatter", {})

        stem = path.name.split(".")[0]
        slug = slugify(stem)
        url, output_path = self.url_deriver.derive(rel, slug, frontmatter.get("permalink"))
        layout = frontmatter.get("layout")

        return Page(
            path=path,
            input_path=rel.as_posix(),
            url=url,
            output_path=output_path,
            slug=slug,
            title=metadata["title"],
            description=metadata["description"],
            date=metadata["date"],
            hidden=metadata["hidden"],
            layout=str(layout) if layout else None,
            body=metadata.get("body", raw),
            source_type=_source_type(path),
            frontmatter=frontmatter,
        )


def _source_type(path: Path) -> str:
    if is_markdown(path):
        return "markdown"
    if is_template(path):
        return "jinja"
    return "html"


class ContentProcessor:
    """Facade for discovering content files and building Page objects."""

    def __init__(
        self,
        input_dir: Path,
        excluded: list[Path] | None = None,
        ignore: list[str] | None = None,
        content_loader: FileContentLoader | None = None,
        page_builder: DefaultPageBuilder | None = None,
    ):
        self.input_dir = input_dir
        self._content_loader = content_loader or FileContentLoader(input_dir, excluded, ignore)
        self._page_builder = page_builder or DefaultPageBuilder(input_dir)

    def load(self) -> list[Page]:
        """Load all content files, in discovery order."""
        return [self._page_builder.build(path) for path in self._content_loader.iter_files()]

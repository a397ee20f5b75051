"""Metadata extractors for Driftwood.

Each extractor pulls one kind of metadata out of a source file, and
``CompositeMetadataExtractor`` merges their results. Front matter is parsed
first so the other extractors can defer to explicit values.

Key classes:
- FrontmatterExtractor: Splits the YAML block from the body.
- TitleExtractor: Front matter title, first heading, or filename.
- DateExtractor: Front matter date, filename prefix, or mtime.
- DescriptionExtractor: Front matter description or first paragraph.
- HiddenExtractor: The ``hidden`` flag used by the posts collection.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from .utils import coerce_datetime, extract_date_from_name, first_paragraph, titleize

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
EMPTY_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n---[ \t]*(?:\r?\n|\Z)")


class FrontMatterError(Exception):
    """Raised when a front matter block is present but unusable.

    Attributes:
        path: Source file containing the block.
        message: Human-readable error message.
    """

    def __init__(self, path: Path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


def extract_frontmatter(text: str, path: Path) -> tuple[dict[str, Any], str]:
    """Extract YAML front matter from content.

    Args:
        text: Raw file content.
        path: Source path, used for error reporting.

    Returns:
        Tuple of (front matter dict, remaining content).

    Raises:
        FrontMatterError: If the block is not valid YAML or not a mapping.
    """
    empty = EMPTY_FRONTMATTER_RE.match(text)
    if empty:
        return {}, text[empty.end() :]
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise FrontMatterError(path, f"Invalid front matter: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FrontMatterError(path, "Front matter must be a mapping")
    return data, text[match.end() :]


class FrontmatterExtractor:
    def extract(self, content: str, path: Path, meta: dict[str, Any]) -> dict[str, Any]:
        frontmatter, body = extract_frontmatter(content, path)
        return {"frontmatter": frontmatter, "body": body}


class TitleExtractor:
    """Extracts the page title.

    Uses the ``title`` front matter key, then the first level-1 heading,
    falling back to titleizing the filename.
    """

    def extract(self, content: str, path: Path, meta: dict[str, Any]) -> dict[str, Any]:
        title = meta.get("frontmatter", {}).get("title")
        if title:
            return {"title": str(title)}
        for line in meta.get("body", content).splitlines():
            stripped = line.strip()
            if stripped.startswith("# "):
                return {"title": stripped[2:].strip()}
        return {"title": titleize(path.name)}


class DateExtractor:
    """Extracts the publication date.

    Looks at the ``date`` front matter key, then a YYYY-MM-DD filename prefix,
    falling back to the file modification time.
    """

    def extract(self, content: str, path: Path, meta: dict[str, Any]) -> dict[str, Any]:
        date = coerce_datetime(meta.get("frontmatter", {}).get("date"))
        if date is None:
            date = extract_date_from_name(path.stem)
        if date is None:
            date = datetime.fromtimestamp(path.stat().st_mtime)
        return {"date": date}


class DescriptionExtractor:
    def extract(self, content: str, path: Path, meta: dict[str, Any]) -> dict[str, Any]:
        description = meta.get("frontmatter", {}).get("description")
        if description is None:
            description = first_paragraph(meta.get("body", content))
        return {"description": str(description)}


class HiddenExtractor:
    """Reads the ``hidden`` flag.

    Only a literal boolean ``true`` hides a page; strings such as "yes" and
    any other value count as not hidden.
    """

    def extract(self, content: str, path: Path, meta: dict[str, Any]) -> dict[str, Any]:
        return {"hidden": meta.get("frontmatter", {}).get("hidden") is True}


class CompositeMetadataExtractor:
    """Runs extractors in order, each seeing the metadata gathered so far."""

    def __init__(self):
        self._extractors = [
            FrontmatterExtractor(),
            TitleExtractor(),
            DateExtractor(),
            DescriptionExtractor(),
            HiddenExtractor(),
        ]

    def extract(self, content: str, path: Path) -> dict[str, Any]:
        """Extract all metadata from content.

        Later extractors can override earlier ones.
        """
        result: dict[str, Any] = {}
        for extractor in self._extractors:
            result.update(extractor.extract(content, path, result))
        return result


default_metadata_extractor = CompositeMetadataExtractor()

"""Utility functions for Driftwood.

This module contains small helpers shared by the content, collection, style
and build modules: string processing, glob matching, path checks and
executable discovery.

Key functions:
    slugify: Convert filenames to URL slugs.
    titleize: Convert filenames to human-readable titles.
    extract_date_from_name: Extract date from filename prefix.
    glob_to_regex / matches_glob: Match posix paths against content globs.
    deep_merge: Merge nested configuration mappings.
    find_executable: Locate a CLI tool in PATH or node_modules.
    ensure_clean_dir: Ensure a directory exists and is empty.
"""

from __future__ import annotations

import re
import shutil
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from typing import Any


def _strip_date_prefix(name: str) -> str:
    parts = name.split("-")
    if len(parts) >= 4 and all(p.isdigit() for p in parts[:3]):
        return "-".join(parts[3:])
    return name


def slugify(name: str) -> str:
    """Convert filename (without extension) to slug, dropping date prefix.

    Args:
        name: Filename stem.

    Returns:
        URL-friendly slug.
    """
    cleaned = _strip_date_prefix(name)
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", cleaned)
    cleaned = cleaned.strip("-").lower()
    return cleaned or "index"


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Examples:
        >>> titleize("2024-01-15-hello-world.md")
        'Hello World'
    """
    base = _strip_date_prefix(Path(filename).stem)
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def extract_date_from_name(name: str) -> datetime | None:
    """Extract a date from a filename with YYYY-MM-DD prefix.

    Examples:
        >>> extract_date_from_name("2024-01-15-hello-world")
        datetime.datetime(2024, 1, 15, 0, 0)
    """
    parts = name.split("-")
    if len(parts) >= 3 and all(p.isdigit() for p in parts[:3]):
        try:
            return datetime(int(parts[0]), int(parts[1]), int(parts[2]))
        except ValueError:
            return None
    return None


def coerce_datetime(value: Any) -> datetime | None:
    """Normalize a YAML date, datetime or ISO string to a naive datetime."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()).replace(tzinfo=None)
        except ValueError:
            return None
    return None


def first_paragraph(text: str, limit: int = 160) -> str:
    """Extract and clean the first prose paragraph from Markdown.

    Skips headings, images, fences and Jinja-only blocks, strips HTML tags and
    Jinja syntax, collapses whitespace and truncates to ``limit``.
    """
    for para in (p.strip() for p in text.split("\n\n")):
        if not para or para.startswith(("#", "![", "```", "{%", "{{")):
            continue
        para = re.sub(r"<[^>]+>", "", para)
        para = re.sub(r"\{[%#{].*?[%#}]\}", "", para, flags=re.DOTALL)
        collapsed = " ".join(para.split())
        if collapsed:
            return collapsed[:limit]
    return ""


@lru_cache(maxsize=64)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a content glob into a regex over posix relative paths.

    ``*`` and ``?`` never cross a ``/``; ``**/`` matches zero or more
    directories and a trailing ``**`` matches anything.
    """
    pattern = pattern[2:] if pattern.startswith("./") else pattern
    out: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


def matches_glob(path: str, pattern: str) -> bool:
    """Return True if the posix relative ``path`` matches ``pattern``."""
    path = path[2:] if path.startswith("./") else path
    return glob_to_regex(pattern).match(path) is not None


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``base`` with ``override`` merged in, recursing into mappings."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Examples:
        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if not root_url:
        return path
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def is_markdown(path: Path) -> bool:
    return path.suffix.lower() == ".md"


def is_template(path: Path) -> bool:
    """Check if a path is a Jinja template (``.jinja`` or ``.html.jinja``)."""
    return path.suffix == ".jinja"


def is_html(path: Path) -> bool:
    return path.suffix.lower() == ".html"


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in PATH or the project's ``node_modules/.bin``.

    Args:
        name: Name of the executable (e.g. ``tailwindcss``).
        project_root: Optional project root to search for a local install.

    Returns:
        Full path to the executable if found, None otherwise.
    """
    found = shutil.which(name)
    if found:
        return found
    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)
    return None


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty."""
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)

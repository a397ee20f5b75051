"""Stylesheet pipeline for Driftwood.

The compiled stylesheet is produced by a fixed, ordered chain of
source-to-source transforms:

1. ImportInliner: inlines ``@import`` rules.
2. UtilityClassGenerator: runs the Tailwind CLI with the theme tokens and
   content globs.
3. NestingDesugarer: flattens nested rules into plain CSS.
4. Minifier: rcssmin, only present when the environment is production.

Each stage maps a stylesheet string to a stylesheet string, so the chain is
deterministic for a given input set and environment flag.

Key classes:
- BaseStylesheetTransform: Interface shared by the stages.
- StylesheetPipeline: Runs the chain for one source file.

Key functions:
- create_default_pipeline: Build the chain from settings and environment.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rcssmin import cssmin

from .config import is_production
from .theme import ThemeTokens
from .utils import find_executable

logger = logging.getLogger(__name__)

# Comments are matched first so imports inside them are left alone.
IMPORT_RE = re.compile(
    r"""(/\*.*?\*/)|@import\s+(?:url\(\s*)?(["']?)([^"'()\s;]+)\2\s*\)?\s*([^;]*);""",
    re.DOTALL,
)
REMOTE_PREFIXES = ("http://", "https://", "//")
NESTABLE_AT_RULES = {"media", "supports", "container", "layer", "document"}


class StylesheetError(Exception):
    """Raised when a stylesheet stage cannot complete.

    Attributes:
        path: Stylesheet being processed.
        message: Human-readable error message.
    """

    def __init__(self, path: Path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class BaseStylesheetTransform(ABC):
    """One stage of the stylesheet chain."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def apply(self, css: str, source: Path) -> str:
        """Transform ``css``, which was read from (or derived from) ``source``."""
        ...


class ImportInliner(BaseStylesheetTransform):
    """Replaces ``@import`` rules with the imported file's contents.

    Targets are resolved relative to the importing file, then inside
    ``node_modules`` (honouring a package's ``style`` field). Media-qualified
    imports are wrapped in ``@media``; a file already inlined is skipped;
    remote URLs are left in place. An unresolvable import is an error.
    """

    name = "import"

    def __init__(self, project_root: Path):
        self.project_root = project_root

    def apply(self, css: str, source: Path) -> str:
        return self._inline(css, source, {source.resolve()})

    def _inline(self, css: str, source: Path, seen: set[Path]) -> str:
        def repl(match: re.Match) -> str:
            if match.group(1):
                return match.group(1)
            target, media = match.group(3), match.group(4).strip()
            if target.startswith(REMOTE_PREFIXES):
                return match.group(0)
            path = self.resolve(target, source.parent)
            if path is None:
                raise StylesheetError(source, f"Cannot resolve @import '{target}'")
            resolved = path.resolve()
            if resolved in seen:
                return ""
            seen.add(resolved)
            inner = self._inline(path.read_text(encoding="utf-8"), path, seen).strip()
            if media:
                return f"@media {media} {{\n{inner}\n}}"
            return inner

        return IMPORT_RE.sub(repl, css)

    def resolve(self, target: str, base_dir: Path) -> Path | None:
        candidates = [base_dir / target]
        modules = self.project_root / "node_modules"
        if not target.startswith("."):
            candidates.append(modules / target)
        for candidate in list(candidates):
            if candidate.suffix != ".css":
                candidates.append(candidate.with_name(candidate.name + ".css"))
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        package_json = modules / target / "package.json"
        if not target.startswith(".") and package_json.is_file():
            style = json.loads(package_json.read_text(encoding="utf-8")).get("style")
            if style and (modules / target / style).is_file():
                return modules / target / style
        return None


class UtilityClassGenerator(BaseStylesheetTransform):
    """Generates utility classes with the Tailwind CLI.

    The theme tokens are written to a Tailwind config module under the
    project's ``.cache`` directory (so plugin ``require`` calls resolve from
    the project's ``node_modules``). When the CLI is not installed the stage
    logs a warning and passes the stylesheet through; when the CLI fails the
    build fails.
    """

    name = "utilities"

    def __init__(
        self,
        project_root: Path,
        content: list[str],
        theme: ThemeTokens | None = None,
        work_dir: Path | None = None,
    ):
        self.project_root = project_root
        self.content = list(content)
        self.theme = theme or ThemeTokens()
        self.work_dir = work_dir or project_root / ".cache" / "styles"

    def content_globs(self) -> list[str]:
        return [str(self.project_root / glob) for glob in self.content]

    def apply(self, css: str, source: Path) -> str:
        tailwind_bin = find_executable("tailwindcss", self.project_root)
        if not tailwind_bin:
            logger.warning(
                "Tailwind CSS CLI not found; skipping utility generation. "
                "Install with `npm install -D tailwindcss` in the project."
            )
            return css

        self.work_dir.mkdir(parents=True, exist_ok=True)
        config_path = self.work_dir / "tailwind.config.js"
        input_path = self.work_dir / "input.css"
        output_path = self.work_dir / "output.css"
        config_path.write_text(
            self.theme.render_tailwind_config(self.content_globs()), encoding="utf-8"
        )
        input_path.write_text(css, encoding="utf-8")

        cmd = [
            tailwind_bin,
            "--config",
            str(config_path),
            "-i",
            str(input_path),
            "-o",
            str(output_path),
        ]
        result = subprocess.run(cmd, capture_output=True, text=True, cwd=self.project_root)
        if result.returncode != 0:
            raise StylesheetError(source, f"Tailwind build failed: {result.stderr.strip()}")
        return output_path.read_text(encoding="utf-8")


@dataclass
class _Declaration:
    text: str


@dataclass
class _Comment:
    text: str


@dataclass
class _Statement:
    text: str


@dataclass
class _Block:
    prelude: str
    children: list[Any] = field(default_factory=list)


def _leaf(text: str):
    return _Statement(text) if text.startswith("@") else _Declaration(text)


def _parse_block(css: str, i: int, top: bool) -> tuple[list[Any], int]:
    items: list[Any] = []
    buf: list[str] = []
    depth = 0
    n = len(css)
    while i < n:
        ch = css[i]
        if css.startswith("/*", i):
            end = css.find("*/", i + 2)
            end = n if end == -1 else end + 2
            if "".join(buf).strip():
                buf.append(css[i:end])
            else:
                items.append(_Comment(css[i:end]))
                buf = []
            i = end
            continue
        if ch == "\\":
            buf.append(css[i : i + 2])
            i += 2
            continue
        if ch in "\"'":
            j = i + 1
            while j < n and css[j] != ch:
                j += 2 if css[j] == "\\" else 1
            buf.append(css[i : j + 1])
            i = j + 1
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif depth == 0 and ch in ";{}":
            text = "".join(buf).strip()
            buf = []
            if ch == "{":
                children, i = _parse_block(css, i + 1, top=False)
                items.append(_Block(text, children))
                continue
            if text:
                items.append(_leaf(text))
            i += 1
            if ch == "}" and not top:
                return items, i
            continue
        buf.append(ch)
        i += 1
    text = "".join(buf).strip()
    if text:
        items.append(_leaf(text))
    return items, i


def _split_selectors(prelude: str) -> list[str]:
    parts: list[str] = []
    buf: list[str] = []
    depth = 0
    quote = ""
    escaped = False
    for ch in prelude:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif quote:
            if ch == quote:
                quote = ""
        elif ch in "\"'":
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            parts.append("".join(buf))
            buf = []
            continue
        buf.append(ch)
    parts.append("".join(buf))
    return [" ".join(p.split()) for p in parts if p.strip()]


def _resolve_selectors(parents: list[str], prelude: str) -> list[str]:
    children = _split_selectors(prelude)
    if not parents:
        return children
    resolved = []
    for parent in parents:
        for child in children:
            resolved.append(child.replace("&", parent) if "&" in child else f"{parent} {child}")
    return resolved


def _at_rule_name(prelude: str) -> str:
    match = re.match(r"@([\w-]+)", prelude)
    return match.group(1).lower() if match else ""


def _flatten(items: list[Any], selectors: list[str]) -> list[Any]:
    flat: list[Any] = []
    own: list[Any] = []
    for item in items:
        if not isinstance(item, _Block):
            (own if selectors else flat).append(item)
        elif item.prelude.startswith("@"):
            if _at_rule_name(item.prelude) in NESTABLE_AT_RULES:
                flat.append(_Block(item.prelude, _flatten(item.children, selectors)))
            else:
                flat.append(item)
        else:
            flat.extend(_flatten(item.children, _resolve_selectors(selectors, item.prelude)))
    if own:
        flat.insert(0, _Block(", ".join(selectors), own))
    return flat


def _serialize(items: list[Any], depth: int = 0) -> list[str]:
    pad = "  " * depth
    lines: list[str] = []
    for item in items:
        if isinstance(item, _Comment):
            lines.append(f"{pad}{item.text}")
        elif isinstance(item, _Block):
            lines.append(f"{pad}{item.prelude} {{")
            lines.extend(_serialize(item.children, depth + 1))
            lines.append(f"{pad}}}")
        else:
            lines.append(f"{pad}{item.text};")
    return lines


class NestingDesugarer(BaseStylesheetTransform):
    """Flattens nested rules.

    ``&`` is replaced by the parent selector; other nested selectors are
    joined to the parent as descendants. Nested ``@media``/``@supports``/
    ``@container``/``@layer`` blocks are hoisted around the parent selector.
    Other at-rule blocks such as ``@keyframes`` are emitted unchanged.
    """

    name = "nesting"

    def apply(self, css: str, source: Path) -> str:
        items, _ = _parse_block(css, 0, top=True)
        lines = _serialize(_flatten(items, []))
        return "\n".join(lines) + "\n" if lines else ""


class Minifier(BaseStylesheetTransform):
    name = "minify"

    def apply(self, css: str, source: Path) -> str:
        return cssmin(css)


class StylesheetPipeline:
    """Runs a stylesheet through an ordered list of transforms."""

    def __init__(self, transforms: list[BaseStylesheetTransform]):
        self.transforms = list(transforms)

    @property
    def stage_names(self) -> list[str]:
        return [t.name for t in self.transforms]

    def process(self, css: str, source: Path) -> str:
        for transform in self.transforms:
            css = transform.apply(css, source)
        return css

    def run(self, source: Path, dest: Path) -> str:
        """Compile ``source`` into ``dest`` and return the compiled text."""
        compiled = self.process(source.read_text(encoding="utf-8"), source)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(compiled, encoding="utf-8")
        return compiled


def create_default_pipeline(
    project_root: Path, settings: dict[str, Any], env: str | None = None
) -> StylesheetPipeline:
    """Build the import, utilities, nesting (and, in production, minify) chain."""
    styles = settings.get("styles", {})
    transforms: list[BaseStylesheetTransform] = [
        ImportInliner(project_root),
        UtilityClassGenerator(
            project_root,
            styles.get("content", []),
            ThemeTokens.from_settings(settings.get("theme")),
        ),
        NestingDesugarer(),
    ]
    if is_production(env):
        transforms.append(Minifier())
    return StylesheetPipeline(transforms)

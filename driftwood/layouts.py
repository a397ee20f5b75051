"""Layout aliases and layout chains for Driftwood.

Pages name their layout in front matter. The name is looked up in a static
alias table (``default`` and ``post`` out of the box); a name that is not an
alias must be a template path under the includes directory. Layout files may
carry their own front matter naming a parent layout, which forms a chain that
is followed until a layout without a parent is reached.

Key classes:
- LayoutAliasTable: Maps symbolic names to template identifiers.
- LayoutResolver: Resolves names to templates and walks layout chains.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .extractors import extract_frontmatter


class LayoutNotFoundError(Exception):
    """Raised when a layout name cannot be resolved to a template.

    Attributes:
        name: The layout name that was requested.
        message: Human-readable error message.
    """

    def __init__(self, name: str, message: str):
        self.name = name
        self.message = message
        super().__init__(message)


class LayoutAliasTable:
    """Static mapping of short layout names to template identifiers."""

    def __init__(self, aliases: Mapping[str, str] | None = None):
        self._aliases: dict[str, str] = {}
        for alias, template in (aliases or {}).items():
            self.add(alias, template)

    def add(self, alias: str, template: str) -> None:
        self._aliases[alias] = template.lstrip("/")

    def resolve(self, name: str) -> str | None:
        """Return the template identifier for an alias, or None."""
        return self._aliases.get(name)

    @property
    def aliases(self) -> dict[str, str]:
        return dict(self._aliases)

    def __contains__(self, name: object) -> bool:
        return name in self._aliases


@dataclass
class Layout:
    """One resolved link of a layout chain.

    Attributes:
        name: Name used to reference the layout (alias or path).
        template: Template identifier relative to the includes directory.
        frontmatter: Front matter of the layout file, minus the parent link.
        parent: Name of the parent layout, if any.
    """

    name: str
    template: str
    frontmatter: dict[str, Any] = field(default_factory=dict)
    parent: str | None = None


class LayoutResolver:
    """Resolves layout names against the alias table and includes directory.

    Attributes:
        includes_dir: Directory holding layout templates.
        aliases: The layout alias table.
    """

    def __init__(self, includes_dir: Path, aliases: LayoutAliasTable):
        self.includes_dir = includes_dir
        self.aliases = aliases
        self._cache: dict[str, Layout] = {}

    def resolve(self, name: str) -> Layout:
        """Resolve a single layout name.

        Raises:
            LayoutNotFoundError: If the name is neither an alias nor an
                existing template, or an alias points at a missing file.
        """
        if name in self._cache:
            return self._cache[name]
        template = self.aliases.resolve(name)
        if template is None:
            template = name.lstrip("/")
            if not (self.includes_dir / template).is_file():
                known = ", ".join(sorted(self.aliases.aliases)) or "none"
                raise LayoutNotFoundError(
                    name, f"Layout '{name}' not found (known aliases: {known})"
                )
        path = self.includes_dir / template
        if not path.is_file():
            raise LayoutNotFoundError(
                name, f"Layout '{name}' points to missing template '{template}'"
            )
        frontmatter, _ = extract_frontmatter(path.read_text(encoding="utf-8"), path)
        parent = frontmatter.pop("layout", None)
        layout = Layout(
            name=name,
            template=template,
            frontmatter=frontmatter,
            parent=str(parent) if parent else None,
        )
        self._cache[name] = layout
        return layout

    def chain(self, name: str | None) -> list[Layout]:
        """Resolve a layout and all of its parents, innermost first.

        Raises:
            LayoutNotFoundError: If any link is missing or the chain loops.
        """
        layouts: list[Layout] = []
        seen: set[str] = set()
        while name:
            layout = self.resolve(name)
            if layout.template in seen:
                raise LayoutNotFoundError(
                    name, f"Layout chain loops back to '{layout.template}'"
                )
            seen.add(layout.template)
            layouts.append(layout)
            name = layout.parent
        return layouts

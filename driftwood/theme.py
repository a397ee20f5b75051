"""Theme tokens for the utility-class stage of the CSS pipeline.

The token set is static configuration: breakpoints, the color palette and
the container spacing variables. It is consumed at build time only, by
writing a Tailwind config module the CLI reads.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .utils import deep_merge

COOL_GRAY = {
    "50": "#f9fafb",
    "100": "#f3f4f6",
    "200": "#e5e7eb",
    "300": "#d1d5db",
    "400": "#9ca3af",
    "500": "#6b7280",
    "600": "#4b5563",
    "700": "#374151",
    "800": "#1f2937",
    "900": "#111827",
}


def _default_screens() -> dict[str, str]:
    return {"xs": "360px", "sm": "640px", "md": "768px", "lg": "1024px"}


@dataclass
class ThemeTokens:
    """Breakpoints, palette and spacing handed to Tailwind.

    Attributes:
        screens: Breakpoint name to min-width.
        colors: Extra color ramps merged into the default palette.
        padding: Extra padding utilities.
        margin: Extra margin utilities.
        dark_mode: Tailwind ``darkMode`` strategy.
        core_plugins: Core plugins toggled on or off.
        plugins: Node modules loaded as Tailwind plugins.
    """

    screens: dict[str, str] = field(default_factory=_default_screens)
    colors: dict[str, Any] = field(default_factory=lambda: {"gray": dict(COOL_GRAY)})
    padding: dict[str, str] = field(
        default_factory=lambda: {"container": "var(--container-spacing)"}
    )
    margin: dict[str, str] = field(
        default_factory=lambda: {"-container": "calc(var(--container-spacing) * -1)"}
    )
    dark_mode: str = "media"
    core_plugins: dict[str, bool] = field(default_factory=lambda: {"container": False})
    plugins: list[str] = field(default_factory=lambda: ["tailwindcss-debug-screens"])

    @classmethod
    def from_settings(cls, overrides: dict[str, Any] | None) -> ThemeTokens:
        """Build tokens with ``theme:`` overrides from driftwood.yaml merged in."""
        tokens = cls()
        if not overrides:
            return tokens
        for key, value in overrides.items():
            if not hasattr(tokens, key):
                raise ValueError(f"Unknown theme token group: {key}")
            current = getattr(tokens, key)
            if isinstance(current, dict) and isinstance(value, dict):
                setattr(tokens, key, deep_merge(current, value))
            else:
                setattr(tokens, key, value)
        return tokens

    def to_tailwind_config(self, content: list[str]) -> dict[str, Any]:
        return {
            "content": list(content),
            "darkMode": self.dark_mode,
            "theme": {
                "screens": dict(self.screens),
                "extend": {
                    "colors": self.colors,
                    "padding": dict(self.padding),
                    "margin": dict(self.margin),
                },
            },
            "corePlugins": dict(self.core_plugins),
        }

    def render_tailwind_config(self, content: list[str]) -> str:
        """Return a CommonJS Tailwind config module for the given content globs."""
        body = json.dumps(self.to_tailwind_config(content), indent=2, sort_keys=True)
        plugins = ", ".join(f"require({json.dumps(name)})" for name in self.plugins)
        return f"const config = {body};\nconfig.plugins = [{plugins}];\nmodule.exports = config;\n"

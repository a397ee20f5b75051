"""Project configuration for Driftwood.

Settings live in ``driftwood.yaml`` at the project root and are deep-merged
over ``DEFAULT_CONFIG``. Template data lives in the ``_data`` directory. The
only environment variable the build reads is ``DRIFTWOOD_ENV``, which turns
on stylesheet minification when set to ``production``.

Key functions:
- load_config: Loads site configuration from driftwood.yaml.
- load_data: Loads template data from the data directory.
- is_production: Evaluates the environment flag.
"""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Any

import yaml

from .utils import deep_merge

CONFIG_FILENAME = "driftwood.yaml"
ENV_VAR = "DRIFTWOOD_ENV"
PRODUCTION = "production"

DEFAULT_CONFIG: dict[str, Any] = {
    "input_dir": ".",
    "includes_dir": "_includes",
    "data_dir": "_data",
    "output_dir": "_site",
    "port": 8080,
    "root_url": "",
    "ignore": ["README.md", "package.json", "package-lock.json"],
    "layouts": {
        "default": "layouts/default.jinja",
        "post": "layouts/post.jinja",
    },
    "collections": {
        "posts": {"glob": "_posts/*.md"},
    },
    "images": {
        # Max width is the layout container width * 2.
        "widths": [400, 800, 1000, 1200, 1450],
        "formats": ["webp", "jpeg"],
        "output": "img",
        "url_path": "/img/",
        "cache_dir": ".cache/img",
        "concurrency": 4,
    },
    "styles": {
        "input": "css/main.css",
        "output": "css/main.css",
        "content": ["**/*.jinja", "_posts/*.md"],
    },
    "theme": {},
    "highlight": {
        "css_class": "highlight",
        "style": "default",
    },
}


class ConfigError(Exception):
    """Raised when driftwood.yaml or a data file cannot be used."""

    def __init__(self, path: Path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from driftwood.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        ConfigError: If the file exists but is not a YAML mapping.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = project_root / CONFIG_FILENAME
    if not config_path.exists():
        return config
    try:
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(config_path, f"Invalid YAML: {exc}") from exc
    if loaded is None:
        return config
    if not isinstance(loaded, dict):
        raise ConfigError(config_path, "Expected a mapping at the top level")
    return deep_merge(config, loaded)


def load_data(project_root: Path, config: dict[str, Any]) -> dict[str, Any]:
    """Load global template data from the data directory.

    Each ``.yaml``, ``.yml`` or ``.json`` file becomes one key named after
    its stem, so ``_data/site.yaml`` is available as ``site`` in templates.
    """
    data_dir = project_root / config.get("data_dir", "_data")
    data: dict[str, Any] = {}
    if not data_dir.exists():
        return data
    for path in sorted(data_dir.iterdir()):
        suffix = path.suffix.lower()
        if not path.is_file() or suffix not in (".yaml", ".yml", ".json"):
            continue
        try:
            with open(path, encoding="utf-8") as f:
                if suffix == ".json":
                    data[path.stem] = json.load(f)
                else:
                    data[path.stem] = yaml.safe_load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ConfigError(path, f"Invalid data file: {exc}") from exc
    return data


def resolve_env(env: str | None = None) -> str:
    """Return the build environment name, falling back to DRIFTWOOD_ENV."""
    if env is None:
        env = os.environ.get(ENV_VAR, "")
    return env.strip().lower()


def is_production(env: str | None = None) -> bool:
    return resolve_env(env) == PRODUCTION

"""Site building functionality for Driftwood.

This module contains the core logic for building the blog from source
files. It loads configuration and data, discovers pages, builds collections,
renders every page through its layouts, compiles the stylesheet, and
publishes the result.

The build is all-or-nothing. Output is written to a staging directory next
to the output directory, and the staging directory replaces the output only
after every page and the stylesheet have been produced. On any error the
staging directory is removed and the previous output is left untouched.

Key functions:
- build_site: Main function to build the entire site.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jinja2 import TemplateSyntaxError

from .config import CONFIG_FILENAME, ConfigError, load_config, load_data, resolve_env
from .content import ContentProcessor, Page
from .extractors import FrontMatterError
from .site import SiteConfig, configure
from .styles import StylesheetError, create_default_pipeline
from .templates import TemplateEngine
from .utils import ensure_clean_dir

logger = logging.getLogger(__name__)


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        pages: List of all pages in the site, in discovery order.
        output_dir: Directory where the site was published.
        data: Global site data dictionary.
        collections: Named collections built for this run.
        stylesheet: Path of the compiled stylesheet, if one was built.
    """

    pages: list[Page]
    output_dir: Path
    data: dict[str, Any]
    collections: dict[str, Any]
    stylesheet: Path | None = None


def staging_dir_for(output_dir: Path) -> Path:
    return output_dir.with_name(f".{output_dir.name}.staging")


def build_site(
    project_root: Path,
    env: str | None = None,
    root_url: str | None = None,
    output_dir_override: Path | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        env: Build environment; falls back to DRIFTWOOD_ENV.
        root_url: Optional base URL used by ``url_for``.
        output_dir_override: Optional path to publish to instead of the
            configured output_dir.

    Returns:
        BuildResult containing all pages, output directory, and site data.

    Raises:
        BuildError: If any step fails. Nothing is written to the output dir.
    """
    try:
        config = load_config(project_root)
        data = load_data(project_root, config)
    except ConfigError as exc:
        raise BuildError(exc.path, exc.message, exc) from exc

    if root_url is not None:
        config["root_url"] = root_url
    output_dir = output_dir_override or project_root / config["output_dir"]
    staging_dir = staging_dir_for(output_dir)
    ensure_clean_dir(staging_dir)

    env = resolve_env(env)
    logger.info("Building %s into %s (env=%s)", project_root, output_dir, env or "development")
    try:
        result = _build_into(project_root, config, data, staging_dir, env)
    except BaseException:
        shutil.rmtree(staging_dir, ignore_errors=True)
        raise

    _publish(staging_dir, output_dir)
    result.output_dir = output_dir
    if result.stylesheet is not None:
        result.stylesheet = output_dir / result.stylesheet.relative_to(staging_dir)
    logger.info("Wrote %d pages to %s", len(result.pages), output_dir)
    return result


def _build_into(
    project_root: Path,
    config: dict[str, Any],
    data: dict[str, Any],
    staging_dir: Path,
    env: str,
) -> BuildResult:
    input_dir = (project_root / config["input_dir"]).resolve()
    includes_dir = input_dir / config["includes_dir"]
    try:
        site = configure(SiteConfig(project_root, staging_dir, config))
    except ValueError as exc:
        raise BuildError(project_root / CONFIG_FILENAME, str(exc), exc) from exc

    excluded = [
        includes_dir,
        project_root / config["data_dir"],
        project_root / config["output_dir"],
        staging_dir,
        project_root / config["images"]["cache_dir"],
    ]
    try:
        pages = ContentProcessor(input_dir, excluded, config.get("ignore")).load()
    except FrontMatterError as exc:
        raise BuildError(exc.path, exc.message, exc) from exc
    _check_output_paths(pages)

    collections = site.collections.build(pages, config)
    engine = TemplateEngine(
        input_dir, includes_dir, site, data, root_url=str(config.get("root_url") or "")
    )
    engine.update_collections(collections)
    asyncio.run(_render_all(engine, pages, staging_dir))

    stylesheet = _build_stylesheet(project_root, config, staging_dir, env)
    return BuildResult(
        pages=pages,
        output_dir=staging_dir,
        data=data,
        collections=collections,
        stylesheet=stylesheet,
    )


def _check_output_paths(pages: list[Page]) -> None:
    """Reject two pages writing the same file."""
    owners: dict[str, Page] = {}
    for page in pages:
        if page.output_path is None:
            continue
        owner = owners.setdefault(page.output_path, page)
        if owner is not page:
            raise BuildError(
                page.path,
                f"Output path {page.output_path} is also written by {owner.input_path}",
            )


async def _render_all(engine: TemplateEngine, pages: list[Page], output_dir: Path) -> None:
    """Render pages concurrently; the first failure aborts the build."""
    await asyncio.gather(*(_render_one(engine, page, output_dir) for page in pages))


async def _render_one(engine: TemplateEngine, page: Page, output_dir: Path) -> None:
    try:
        rendered = await engine.render_page(page)
    except TemplateSyntaxError as exc:
        raise BuildError(
            page.path,
            f"Template syntax error on line {exc.lineno}: {exc.message}",
            exc,
        ) from exc
    except Exception as exc:
        raise BuildError(page.path, _format_error_message(exc), exc) from exc
    if page.output_path is None:
        logger.debug("Skipping %s (permalink: false)", page.input_path)
        return
    _write_page(output_dir, page, rendered)


def _build_stylesheet(
    project_root: Path, config: dict[str, Any], output_dir: Path, env: str
) -> Path | None:
    styles = config.get("styles", {})
    source = project_root / styles.get("input", "css/main.css")
    if not source.exists():
        logger.debug("No stylesheet at %s", source)
        return None
    dest = output_dir / styles.get("output", "css/main.css")
    try:
        pipeline = create_default_pipeline(project_root, config, env)
    except ValueError as exc:
        raise BuildError(project_root / CONFIG_FILENAME, str(exc), exc) from exc
    try:
        pipeline.run(source, dest)
    except StylesheetError as exc:
        raise BuildError(exc.path, exc.message, exc) from exc
    except OSError as exc:
        raise BuildError(source, _format_error_message(exc), exc) from exc
    return dest


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message."""
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "LayoutNotFoundError":
        return f"Layout error: {error_msg}"
    if error_type == "ImageNotFoundError":
        return f"Image not found: {error_msg}"

    return f"{error_type}: {error_msg}"


def _write_page(output_dir: Path, page: Page, rendered: str) -> None:
    target = output_dir / page.output_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(rendered, encoding="utf-8")
    logger.debug("Wrote %s", target)


def _publish(staging_dir: Path, output_dir: Path) -> None:
    """Swap the finished staging directory into place."""
    if output_dir.exists():
        previous = output_dir.with_name(f".{output_dir.name}.previous")
        if previous.exists():
            shutil.rmtree(previous)
        os.replace(output_dir, previous)
        os.replace(staging_dir, output_dir)
        shutil.rmtree(previous)
    else:
        output_dir.parent.mkdir(parents=True, exist_ok=True)
        os.replace(staging_dir, output_dir)

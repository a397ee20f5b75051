"""Command-line interface for Driftwood.

Commands:
- new: Scaffold a new blog.
- build: Build the site into the output directory.
- serve: Run development server with live reload.
- post: Create a new post interactively.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from pathlib import Path

import click
import questionary

from . import __version__
from .config import ENV_VAR
from .utils import slugify

# Path to the default template directory
_TEMPLATES_DIR = Path(__file__).parent / "templates" / "default"


@click.group()
@click.version_option(version=__version__, prog_name="driftwood")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """Driftwood blog generator."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("name")
def new(name: str):
    """Scaffold a new Driftwood blog."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New Driftwood blog created at {target}")


@cli.command()
@click.option("--env", envvar=ENV_VAR, default=None, help="Build environment (production minifies CSS)")
def build(env: str | None):
    """Build the site into the output directory."""
    project_root = Path.cwd()
    from .build import BuildError, build_site

    try:
        result = build_site(project_root, env=env)
    except BuildError as exc:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  File: {_display_path(exc.source_path, project_root)}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
        raise SystemExit(1) from None
    click.echo(f"Built {len(result.pages)} pages into {result.output_dir}")


@cli.command()
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides driftwood.yaml)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (defaults to port + 1)",
)
@click.option("--env", envvar=ENV_VAR, default=None, help="Build environment")
def serve(port: int | None, ws_port: int | None, env: str | None):
    """Run dev server with live reload."""
    project_root = Path.cwd()
    from .server import DevServer

    server = DevServer(project_root, http_port=port, ws_port=ws_port, env=env)
    server.start()


@cli.command()
def post():
    """Create a new post interactively."""
    project_root = Path.cwd()
    posts_dir = project_root / "_posts"

    title = questionary.text(
        "Title:",
        validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()

    description = questionary.text(
        "Description:",
        style=_questionary_style(),
    ).ask()
    if description is None:
        raise click.Abort()

    title = title.strip()
    slug = slugify(title)
    target_path = posts_dir / f"{slug}.md"
    if target_path.exists():
        raise click.ClickException(
            f"File already exists: {target_path.relative_to(project_root)}"
        )

    # A dated file with the same slug would publish to the same URL.
    clash = _find_slug_clash(posts_dir, slug)
    if clash is not None:
        raise click.ClickException(
            f"A post with slug '{slug}' already exists: {clash.relative_to(project_root)}"
        )

    posts_dir.mkdir(parents=True, exist_ok=True)
    target_path.write_text(_post_template(title, description.strip()), encoding="utf-8")
    click.echo(f"Created {target_path.relative_to(project_root)}")


def _find_slug_clash(posts_dir: Path, slug: str) -> Path | None:
    """Return an existing post whose slug (date prefix dropped) equals ``slug``."""
    if not posts_dir.exists():
        return None
    for path in sorted(posts_dir.glob("*.md")):
        if slugify(path.name.split(".")[0]) == slug:
            return path
    return None


def _post_template(title: str, description: str) -> str:
    frontmatter = [
        "---",
        "layout: post",
        f"title: {json.dumps(title)}",
        f"description: {json.dumps(description)}",
        "---",
        "",
        "",
    ]
    return "\n".join(frontmatter)


def _display_path(path: Path, project_root: Path) -> Path:
    try:
        return path.resolve().relative_to(project_root.resolve())
    except ValueError:
        return path


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Copy the bundled blog template into ``root`` and add package.json."""
    for src_path in _TEMPLATES_DIR.rglob("*"):
        if src_path.is_dir() or "__pycache__" in src_path.parts:
            continue
        dest_path = root / src_path.relative_to(_TEMPLATES_DIR)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)

    package_json = {
        "name": slugify(root.name) or "blog",
        "private": True,
        "scripts": {
            "build": "DRIFTWOOD_ENV=production driftwood build",
            "start": "driftwood serve",
        },
        "devDependencies": {
            "tailwindcss": "^3.4.13",
            "tailwindcss-debug-screens": "^2.2.1",
        },
    }
    (root / "package.json").write_text(
        json.dumps(package_json, indent=2) + "\n", encoding="utf-8"
    )
    (root / ".gitignore").write_text("_site/\n.cache/\nnode_modules/\n", encoding="utf-8")

    _try_npm_install(root)
    _try_git_init(root)


def _try_git_init(root: Path) -> None:
    """Initialize a git repository if git is available."""
    if os.environ.get("DRIFTWOOD_SKIP_GIT_INIT") == "1":
        return
    git_bin = shutil.which("git")
    if not git_bin:
        return
    try:
        subprocess.run([git_bin, "init"], cwd=root, check=True, capture_output=True)
    except (OSError, subprocess.CalledProcessError):
        click.echo("git init failed; run it manually.", err=True)


def _try_npm_install(root: Path) -> None:
    """Attempt to install Node dependencies if npm is available."""
    if os.environ.get("DRIFTWOOD_SKIP_NPM_INSTALL") == "1":
        return
    npm_bin = shutil.which("npm")
    if not npm_bin:
        return
    try:
        subprocess.run([npm_bin, "install"], cwd=root, check=True, capture_output=True)
    except (OSError, subprocess.CalledProcessError):
        click.echo("npm install failed; run it manually.", err=True)

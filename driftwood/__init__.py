"""Driftwood blog generator.

Driftwood builds a personal blog from Markdown posts with YAML front matter.
Post bodies are Jinja templates, so shortcodes such as ``image`` can be used
inline; pages are wrapped in aliased layouts, images are resized into
responsive variants, and one stylesheet is compiled through a fixed chain of
transforms.

The main entry point is the CLI module, which provides commands for
scaffolding a blog, creating posts, building and serving the site.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"

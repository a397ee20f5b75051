"""Responsive image shortcode for Driftwood.

The ``image`` shortcode takes a source path, alt text and a ``sizes``
attribute, produces resized raster variants at fixed widths with Pillow, and
returns a ``<picture>`` element referencing them.

Resizing is CPU and I/O bound, so it runs in worker threads while the
calling template awaits the result. Other shortcode calls on the same event
loop keep going in the meantime. Identical requests share one
transformation, and variants are cached on disk under a content hash so they
are only regenerated when the source changes.

A missing source raises ``ImageNotFoundError``. Nothing here catches or
retries it: a broken image reference fails the build.

Key classes:
- ImageShortcode: Async callable registered as the ``image`` shortcode.
- ImageMetadata / ImageVariant: Description of the generated files.

Key functions:
- generate_html: Render markup for an ImageMetadata.
"""

from __future__ import annotations

import asyncio
import errno
import hashlib
import io
import logging
import os
import shutil
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from markupsafe import Markup, escape
from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

DEFAULT_WIDTHS = (400, 800, 1000, 1200, 1450)
DEFAULT_FORMATS = ("webp", "jpeg")

PIL_FORMATS = {"webp": "WEBP", "jpeg": "JPEG", "png": "PNG", "avif": "AVIF"}
MIME_TYPES = {
    "webp": "image/webp",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "avif": "image/avif",
}


class ImageNotFoundError(FileNotFoundError):
    """Raised when an image shortcode references a missing source file.

    Attributes:
        src: The source path as written in the template.
        path: The resolved filesystem path that was checked.
    """

    def __init__(self, src: str, path: Path):
        self.src = src
        self.path = path
        super().__init__(errno.ENOENT, f"Image source '{src}' not found", str(path))


@dataclass(frozen=True)
class ImageVariant:
    """One generated file.

    Attributes:
        format: Output format key (e.g. "webp").
        width: Pixel width.
        height: Pixel height.
        filename: File name shared by the cache and output copies.
        url: Public URL of the variant.
        output_path: Where the variant was written in the output tree.
    """

    format: str
    width: int
    height: int
    filename: str
    url: str
    output_path: Path

    @property
    def srcset_entry(self) -> str:
        return f"{self.url} {self.width}w"


@dataclass
class ImageMetadata:
    """Variants generated for one source, grouped by format in configured order."""

    source: Path
    formats: dict[str, list[ImageVariant]] = field(default_factory=dict)


def effective_widths(requested: Iterable[int], source_width: int) -> list[int]:
    """Drop widths larger than the source, using the source width once instead.

    Images are never upscaled. An empty request means "original size only".
    """
    requested = {int(w) for w in requested}
    if not requested:
        return [source_width]
    kept = sorted(w for w in requested if w <= source_width)
    if len(kept) < len(requested) and source_width not in kept:
        kept.append(source_width)
    return kept


def _render_attributes(attributes: Mapping[str, Any]) -> str:
    parts = []
    for name, value in attributes.items():
        if value is None or value is False:
            continue
        if value is True:
            parts.append(f" {name}")
        else:
            parts.append(f' {name}="{escape(str(value))}"')
    return "".join(parts)


def generate_html(metadata: ImageMetadata, attributes: Mapping[str, Any]) -> str:
    """Render a responsive image element for generated variants.

    The last configured format is the ``<img>`` fallback; every earlier format
    becomes a ``<source>``. The ``<img>`` src is the smallest fallback variant
    and its width/height are those of the largest one.

    Args:
        metadata: Result of ImageShortcode.generate.
        attributes: ``alt`` (required), ``sizes`` and passthrough attributes.

    Raises:
        ValueError: If ``alt`` is missing, or ``sizes`` is missing while more
            than one width was produced.
    """
    attrs = dict(attributes)
    alt = attrs.pop("alt", None)
    if alt is None:
        raise ValueError(f"Missing `alt` attribute on image shortcode for {metadata.source}")
    sizes = attrs.pop("sizes", None)

    formats = list(metadata.formats)
    fallback = metadata.formats[formats[-1]]
    multiple = len(fallback) > 1
    if multiple and not sizes:
        raise ValueError(
            f"Missing `sizes` attribute on image shortcode for {metadata.source}"
        )

    smallest, largest = fallback[0], fallback[-1]
    img_attrs: dict[str, Any] = {"alt": alt}
    img_attrs.update(attrs)
    img_attrs.update(src=smallest.url, width=largest.width, height=largest.height)
    if multiple:
        img_attrs["srcset"] = ", ".join(v.srcset_entry for v in fallback)
        img_attrs["sizes"] = sizes
    img = f"<img{_render_attributes(img_attrs)}>"

    sources = []
    for fmt in formats[:-1]:
        variants = metadata.formats[fmt]
        source_attrs = {
            "type": MIME_TYPES.get(fmt, f"image/{fmt}"),
            "srcset": ", ".join(v.srcset_entry for v in variants),
            "sizes": sizes if multiple else None,
        }
        sources.append(f"<source{_render_attributes(source_attrs)}>")
    if not sources:
        return img
    return f"<picture>{''.join(sources)}{img}</picture>"


class ImageShortcode:
    """Async ``image`` shortcode backed by Pillow.

    Attributes:
        project_root: Base for resolving relative source paths.
        output_dir: Directory in the output tree receiving the variants.
        widths: Requested widths in pixels.
        formats: Output formats; the last one is the ``<img>`` fallback.
        url_path: Public URL prefix of ``output_dir``.
        cache_dir: Persistent directory holding generated variants.
        concurrency: Maximum number of resize jobs running at once.
    """

    def __init__(
        self,
        project_root: Path,
        output_dir: Path,
        widths: Iterable[int] = DEFAULT_WIDTHS,
        formats: Iterable[str] = DEFAULT_FORMATS,
        url_path: str = "/img/",
        cache_dir: Path | None = None,
        concurrency: int = 4,
    ):
        self.project_root = project_root
        self.output_dir = output_dir
        self.widths = tuple(int(w) for w in widths)
        self.formats = tuple(f.lower() for f in formats)
        unknown = [f for f in self.formats if f not in PIL_FORMATS]
        if not self.formats or unknown:
            raise ValueError(f"Unsupported image formats: {unknown or 'none given'}")
        self.url_path = url_path if url_path.endswith("/") else f"{url_path}/"
        self.cache_dir = cache_dir or project_root / ".cache" / "img"
        self.concurrency = max(1, int(concurrency))
        self._results: dict[tuple, ImageMetadata] = {}
        self._pending: dict[tuple, asyncio.Future] = {}
        self._semaphore: asyncio.Semaphore | None = None
        self._semaphore_loop: asyncio.AbstractEventLoop | None = None

    async def __call__(
        self, src: str, alt: str | None = None, sizes: str | None = None, **attributes: Any
    ) -> Markup:
        metadata = await self.generate(src)
        return Markup(generate_html(metadata, {"alt": alt, "sizes": sizes, **attributes}))

    def resolve_source(self, src: str) -> Path:
        """Resolve a source path against the project root.

        Raises:
            ImageNotFoundError: If the file does not exist.
        """
        path = Path(src)
        if not path.is_absolute():
            path = self.project_root / path
        if not path.is_file():
            raise ImageNotFoundError(src, path)
        return path

    async def generate(self, src: str) -> ImageMetadata:
        """Produce (or reuse) all variants for ``src``."""
        path = self.resolve_source(src)
        stat = path.stat()
        key = (
            str(path.resolve()),
            self.widths,
            self.formats,
            str(self.output_dir),
            stat.st_mtime_ns,
            stat.st_size,
        )
        if key in self._results:
            return self._results[key]
        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._run(path))
            self._pending[key] = pending
        try:
            metadata = await pending
        finally:
            if pending.done():
                self._pending.pop(key, None)
        self._results[key] = metadata
        return metadata

    def _get_semaphore(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.concurrency)
            self._semaphore_loop = loop
        return self._semaphore

    async def _run(self, path: Path) -> ImageMetadata:
        async with self._get_semaphore():
            return await asyncio.to_thread(self._transform, path)

    def _digest(self, data: bytes) -> str:
        digest = hashlib.sha256(data)
        digest.update(repr((self.widths, self.formats)).encode("utf-8"))
        return digest.hexdigest()[:10]

    def _transform(self, path: Path) -> ImageMetadata:
        data = path.read_bytes()
        digest = self._digest(data)
        with Image.open(io.BytesIO(data)) as opened:
            image = ImageOps.exif_transpose(opened)
            image.load()
        source_width, source_height = image.size
        widths = effective_widths(self.widths, source_width)

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        metadata = ImageMetadata(source=path)
        for fmt in self.formats:
            variants = []
            for width in widths:
                height = max(1, round(source_height * width / source_width))
                filename = f"{digest}-{width}.{fmt}"
                cached = self.cache_dir / filename
                if cached.exists():
                    logger.debug("Image cache hit: %s", filename)
                else:
                    self._write_variant(image, fmt, width, height, cached)
                dest = self.output_dir / filename
                shutil.copy2(cached, dest)
                variants.append(
                    ImageVariant(
                        format=fmt,
                        width=width,
                        height=height,
                        filename=filename,
                        url=f"{self.url_path}{filename}",
                        output_path=dest,
                    )
                )
            metadata.formats[fmt] = variants
        return metadata

    @staticmethod
    def _write_variant(
        image: Image.Image, fmt: str, width: int, height: int, target: Path
    ) -> None:
        if (width, height) == image.size:
            resized = image
        else:
            resized = image.resize((width, height), Image.Resampling.LANCZOS)
        if fmt == "jpeg" and resized.mode not in ("RGB", "L"):
            resized = resized.convert("RGB")
        elif resized.mode == "P":
            resized = resized.convert("RGBA")
        tmp = target.with_name(f"{target.name}.{threading.get_ident()}.tmp")
        resized.save(tmp, format=PIL_FORMATS[fmt])
        os.replace(tmp, target)
        logger.debug("Wrote image variant %s", target.name)

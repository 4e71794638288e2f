from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, TypeVar
from urllib.parse import unquote

from bs4 import BeautifulSoup, Tag

from .cache import CachedImage, CacheKey, ProcessedImageCache
from .engine import generate_placeholder, transcode_image
from .errors import ImageDecodeError
from .host import BuildFile, Files
from .paths import is_generated
from .picture import attr_text
from .results import BuildResult
from .rewrite import rewrite_image
from .settings import ResponsiveSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Any URL scheme (http:, https:, data:, ...) or a protocol-relative "//host".
_EXTERNAL_RE = re.compile(r"^(?:[a-z][a-z0-9+.\-]*:|//)", re.IGNORECASE)


@dataclass
class PassContext:
    """State shared by every document and image of one build pass."""

    files: Files
    destination: Path
    settings: ResponsiveSettings
    cache: ProcessedImageCache
    result: BuildResult
    # mtime stand-in for files the host gave none, stable for the whole build.
    started: float = field(default_factory=time.time)
    wrappers: int = 0


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    size = max(1, size)
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


def is_candidate(src: Optional[str]) -> bool:
    """Local references only; external and data: URLs are never touched."""
    if not src or not src.strip():
        return False
    return not _EXTERNAL_RE.match(src.strip())


def normalize_src(src: str) -> str:
    """'/images/a%20b.jpg?v=2' -> 'images/a b.jpg' (a build-relative key)."""
    path = re.split(r"[?#]", src.strip(), maxsplit=1)[0]
    return unquote(path).lstrip("/")


async def load_source(ctx: PassContext, path: str) -> Optional[BuildFile]:
    """The host's copy of path, or one read from the build destination."""
    entry = ctx.files.get(path)
    if entry is not None:
        return entry

    image_path = ctx.destination / path
    try:
        if not await asyncio.to_thread(image_path.is_file):
            logger.warning("Image not found in build: %s", path)
            return None
        contents = await asyncio.to_thread(image_path.read_bytes)
        mtime = (await asyncio.to_thread(image_path.stat)).st_mtime
    except OSError as exc:
        logger.warning("Error reading image from build directory: %s", exc)
        return None

    entry = BuildFile(contents=contents, mtime=mtime)
    ctx.files[path] = entry
    return entry


async def _transcode(ctx: PassContext, path: str, source: BuildFile) -> CachedImage:
    s = ctx.settings
    logger.debug("Processing image: %s", path)
    variants = await transcode_image(source.contents, path, s)

    placeholder = None
    if s.is_progressive and variants:
        try:
            placeholder = await generate_placeholder(source.contents, path, s)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Error generating placeholder for %s: %s", path, exc)

    for v in variants:
        ctx.files[v.path] = BuildFile(contents=v.contents)
        ctx.result.written.append(v.path)
    if placeholder is not None:
        ctx.files[placeholder.path] = BuildFile(contents=placeholder.contents)
        ctx.result.written.append(placeholder.path)

    ctx.result.images_transcoded += 1
    return CachedImage(variants=variants, placeholder=placeholder)


async def process_image_element(ctx: PassContext, soup: BeautifulSoup, img: Tag) -> bool:
    """Transcode (or reuse) one <img> and rewrite it. True when the markup changed."""
    src = attr_text(img, "src")
    if not is_candidate(src):
        logger.debug("Skipping external or data URL: %s", src)
        return False

    if img.find_parent("picture") is not None:
        logger.debug("Skipping %s, already inside <picture>", src)
        return False

    if img.find_parent(class_="js-progressive-image-wrapper") is not None:
        logger.debug("Skipping %s, already wrapped for progressive loading", src)
        return False

    path = normalize_src(src)
    if is_generated(path, ctx.settings):
        logger.debug("Skipping generated image %s", path)
        return False

    source = await load_source(ctx, path)
    if source is None:
        ctx.result.fail_image(path, "not found")
        return False

    mtime = source.mtime if source.mtime is not None else ctx.started
    key = CacheKey(path, mtime)

    try:
        cached, hit = await ctx.cache.get_or_create(key, lambda: _transcode(ctx, path, source))
    except ImageDecodeError as exc:
        logger.error("Error processing image: %s", exc)
        ctx.result.fail_image(path, f"decode failed: {exc.reason}")
        return False
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error processing image %s: %s", path, exc)
        ctx.result.fail_image(path, str(exc))
        return False

    if hit:
        logger.debug("Using cached variants for %s", path)
        ctx.result.cache_hits += 1

    if not cached.variants:
        logger.debug("No variants for %s, leaving markup as is", path)
        return False

    replacement = rewrite_image(soup, img, cached.variants, ctx.settings, cached.placeholder)
    if replacement is not None and replacement.name == "div":
        ctx.wrappers += 1
    return replacement is not None


async def process_html_file(ctx: PassContext, html_path: str) -> int:
    """
    Rewrite every eligible image of one document.

    Images are handled in chunks of settings.concurrency; a chunk's images
    run concurrently, chunks run one after another. Returns the number of
    replaced elements; the document is only re-serialized when it is > 0.
    """
    logger.debug("Processing HTML file: %s", html_path)
    s = ctx.settings
    doc = ctx.files[html_path]
    ctx.result.documents += 1

    soup = BeautifulSoup(doc.contents.decode("utf-8", errors="replace"), "html.parser")
    images = soup.select(s.img_selector)
    if not images:
        logger.debug("No images found in %s", html_path)
        return 0

    logger.debug("Found %d images in %s", len(images), html_path)

    replaced = 0
    for chunk in chunked(images, s.concurrency):
        outcomes = await asyncio.gather(*(process_image_element(ctx, soup, img) for img in chunk))
        replaced += sum(1 for changed in outcomes if changed)

    if replaced:
        doc.contents = str(soup).encode("utf-8")
    return replaced

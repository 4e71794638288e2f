"""
Density variants for images no document references.

Such images are usually CSS backgrounds, so they get predictable hash-free
names (hero-1600w.webp, hero-800w.webp) that a stylesheet can use in
image-set().
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .documents import PassContext, chunked
from .engine import transcode_background
from .host import Build, BuildFile, Files
from .paths import is_generated
from .results import DensityVariant
from .settings import ResponsiveSettings

logger = logging.getLogger(__name__)


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


def scan_image_folders(build: Build, s: ResponsiveSettings) -> Dict[str, Path]:
    """
    Images on disk below the first existing folder of s.image_folders.

    Keys are source-relative POSIX paths. Catches images copied into the site
    outside the host's tracked files.
    """
    root = Path(build.source())
    for folder in s.image_folders:
        base = root / folder
        if not base.is_dir():
            continue
        found: Dict[str, Path] = {}
        for f in sorted(base.rglob("*")):
            if not f.is_file() or not _is_relative_to(f, root):
                continue
            rel = f.relative_to(root).as_posix()
            if build.match(s.image_pattern, rel):
                found[rel] = f
        logger.debug("Found %d images on disk in %s", len(found), base)
        return found
    return {}


def collect_candidates(
    files: Files,
    build: Build,
    s: ResponsiveSettings,
    processed: Set[str],
    on_disk: Optional[Dict[str, Path]] = None,
) -> List[Tuple[str, Optional[BuildFile], Optional[Path]]]:
    """
    Unreferenced images as (path, host entry, disk path).

    Disk hits come first, host files after; when both hold the same path the
    host's contents are used. Referenced images, anything in the output dir
    and anything named like a variant are left out, so generated files never
    become sources of a later pass.
    """
    ordered: Dict[str, Tuple[Optional[BuildFile], Optional[Path]]] = {}
    for rel, disk_path in (on_disk or {}).items():
        ordered[rel] = (None, disk_path)
    for rel in list(files):
        if build.match(s.image_pattern, rel):
            ordered[rel] = (files[rel], None)

    out: List[Tuple[str, Optional[BuildFile], Optional[Path]]] = []
    for rel, (entry, disk_path) in ordered.items():
        if rel in processed:
            continue
        if is_generated(rel, s):
            logger.debug("Skipping generated file %s", rel)
            continue
        out.append((rel, entry, disk_path))
    return out


async def _process_one(
    ctx: PassContext,
    rel: str,
    entry: Optional[BuildFile],
    disk_path: Optional[Path],
) -> List[DensityVariant]:
    try:
        contents = entry.contents if entry is not None else await asyncio.to_thread(disk_path.read_bytes)
        variants = await transcode_background(contents, rel, ctx.settings)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error processing background image %s: %s", rel, exc)
        ctx.result.fail_image(rel, str(exc))
        return []

    for v in variants:
        ctx.files[v.path] = BuildFile(contents=v.contents)
        ctx.result.written.append(v.path)
    ctx.result.background_images += 1
    logger.debug("Generated %d background variants for %s", len(variants), rel)
    return variants


async def process_unused_images(ctx: PassContext, build: Build) -> List[DensityVariant]:
    """Run the two-density pass over every image the documents did not use."""
    s = ctx.settings
    # Images the documents used, including ones that failed there.
    processed = ctx.cache.processed_paths() | {f.path for f in ctx.result.failures}
    on_disk = await asyncio.to_thread(scan_image_folders, build, s)
    candidates = collect_candidates(ctx.files, build, s, processed, on_disk)

    if not candidates:
        logger.debug("No unused images found for background processing")
        return []

    logger.debug("Processing %d unused images for background use", len(candidates))
    variants: List[DensityVariant] = []
    for chunk in chunked(candidates, s.concurrency):
        groups = await asyncio.gather(*(_process_one(ctx, *c) for c in chunk))
        for group in groups:
            variants.extend(group)
    return variants

"""
Build plugin entry point.

    plugin = optimize_images({"widths": [320, 640], "formats": ["webp", "original"]})
    result = plugin(files, build)

One pass: rewrite images referenced by HTML documents, then give the
unreferenced ones density variants, then optionally write a manifest.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional

from .background import process_unused_images
from .cache import ProcessedImageCache
from .documents import PassContext, chunked, process_html_file
from .host import Build, BuildFile, Files
from .manifest import write_manifest
from .progressive import loader_assets
from .results import BuildResult
from .settings import ResponsiveSettings, build_settings

logger = logging.getLogger(__name__)

PLUGIN_NAME = "respimg"

Done = Callable[[Optional[BaseException]], None]


async def run_build(
    files: Files,
    build: Build,
    s: ResponsiveSettings,
    cache: Optional[ProcessedImageCache] = None,
) -> BuildResult:
    """
    Run one pass over files.

    States: processing_referenced -> processing_unreferenced -> emitting_metadata
    -> done, the middle two only when enabled. Never raises; a fatal error
    ends in "failed" with the exception on result.error.
    """
    result = BuildResult(state="processing_referenced")
    try:
        debug = build.debug(PLUGIN_NAME)
        destination = build.destination()

        html_files = [p for p in list(files) if build.match(s.html_pattern, p)]
        if not html_files:
            debug("No HTML files found")
            result.state = "done"
            return result

        ctx = PassContext(
            files=files,
            destination=destination,
            settings=s,
            cache=cache if cache is not None else ProcessedImageCache(),
            result=result,
        )

        for chunk in chunked(html_files, s.concurrency):
            await asyncio.gather(*(process_html_file(ctx, p) for p in chunk))

        if s.is_progressive and ctx.wrappers:
            for path, contents in loader_assets(s).items():
                files[path] = BuildFile(contents=contents)
                result.written.append(path)

        if s.process_unused_images:
            result.state = "processing_unreferenced"
            await process_unused_images(ctx, build)

        if s.generate_metadata:
            result.state = "emitting_metadata"
            result.written.append(write_manifest(ctx.cache, files, s))

        debug("Responsive images processing complete")
        result.state = "done"
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Error in responsive images plugin: %s", exc)
        result.state = "failed"
        result.error = exc
    return result


class ResponsiveImages:
    """A configured plugin; call it once per build."""

    def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
        self.settings = build_settings(options)

    async def run_async(self, files: Files, build: Build) -> BuildResult:
        return await run_build(files, build, self.settings)

    def __call__(self, files: Files, build: Build, done: Optional[Done] = None) -> BuildResult:
        result = asyncio.run(self.run_async(files, build))
        if done is not None:
            done(result.error)
        return result


def optimize_images(options: Optional[Mapping[str, Any]] = None) -> ResponsiveImages:
    return ResponsiveImages(options)

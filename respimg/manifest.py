from __future__ import annotations

import json
import posixpath
from dataclasses import asdict, dataclass
from typing import Dict, List

from .cache import ProcessedImageCache
from .host import BuildFile, Files
from .settings import ResponsiveSettings

MANIFEST_NAME = "responsive-images-manifest.json"


@dataclass(frozen=True)
class VariantRecord:
    path: str
    width: int
    height: int
    format: str
    size: int


def build_manifest(cache: ProcessedImageCache) -> Dict[str, List[VariantRecord]]:
    """Source path -> its variants, for every image transcoded this build."""
    manifest: Dict[str, List[VariantRecord]] = {}
    for key, entry in cache.items():
        manifest[key.path] = [
            VariantRecord(path=v.path, width=v.width, height=v.height, format=v.format, size=v.size)
            for v in entry.variants
        ]
    return manifest


def manifest_path(s: ResponsiveSettings) -> str:
    return posixpath.join(s.output_dir, MANIFEST_NAME)


def write_manifest(cache: ProcessedImageCache, files: Files, s: ResponsiveSettings) -> str:
    manifest = build_manifest(cache)
    payload = {src: [asdict(r) for r in records] for src, records in manifest.items()}
    path = manifest_path(s)
    files[path] = BuildFile(contents=json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8"))
    return path

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class SizedVariant:
    """
    One (width, format) derivative generated for an image referenced in markup.

    Keeping it immutable (frozen=True) lets cached variants be shared between
    documents without copying.
    """
    path: str
    contents: bytes = field(repr=False)
    width: int
    height: int
    format: str
    original_format: str

    @property
    def size(self) -> int:
        return len(self.contents)


@dataclass(frozen=True)
class DensityVariant:
    """One (density, format) derivative generated for an unreferenced image."""
    path: str
    contents: bytes = field(repr=False)
    width: int
    height: int
    format: str
    original_format: str
    density: str  # "1x" or "2x"

    @property
    def size(self) -> int:
        return len(self.contents)


@dataclass(frozen=True)
class Placeholder:
    """Tiny blurred preview used by progressive loading."""
    path: str
    contents: bytes = field(repr=False)
    original_width: Optional[int] = None
    original_height: Optional[int] = None


@dataclass(frozen=True)
class ImageFailure:
    path: str
    reason: str


@dataclass
class BuildResult:
    """Outcome of one plugin pass."""
    state: str = "idle"
    error: Optional[BaseException] = None
    documents: int = 0
    images_transcoded: int = 0
    cache_hits: int = 0
    background_images: int = 0
    written: List[str] = field(default_factory=list)
    failures: List[ImageFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == "done"

    def fail_image(self, path: str, reason: str) -> None:
        self.failures.append(ImageFailure(path=path, reason=reason))

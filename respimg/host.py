"""
Host side of a build: the file mapping and the accessor the plugin runs against.

SiteBuild is a directory-backed host: it loads a built site into memory,
lets the plugin rewrite it and writes the result back.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Callable, Dict, Iterable, List, MutableMapping, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class BuildFile:
    contents: bytes
    mtime: Optional[float] = None


Files = MutableMapping[str, BuildFile]


class Build(Protocol):
    """What the plugin needs from the host build."""

    def source(self) -> Path:
        ...

    def destination(self) -> Path:
        ...

    def match(self, pattern: str, path: str) -> bool:
        ...

    def debug(self, namespace: str) -> Callable[..., None]:
        ...


def _expand_braces(pattern: str) -> List[str]:
    """Expand brace alternatives, e.g. *.{jpg,png} -> [*.jpg, *.png]."""
    m = re.search(r"\{([^{}]*)\}", pattern)
    if not m:
        return [pattern]
    head, tail = pattern[: m.start()], pattern[m.end():]
    out: List[str] = []
    for alt in m.group(1).split(","):
        out.extend(_expand_braces(head + alt + tail))
    return out


def _glob_to_regex(pattern: str) -> str:
    parts: List[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append(r"(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(r".*")
            i += 2
        elif pattern[i] == "*":
            parts.append(r"[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append(r"[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return "".join(parts)


@lru_cache(maxsize=64)
def compile_glob(pattern: str) -> re.Pattern:
    alternatives = [_glob_to_regex(p) for p in _expand_braces(pattern)]
    return re.compile(r"^(?:%s)$" % "|".join(alternatives), re.IGNORECASE)


def glob_match(pattern: str, path: str) -> bool:
    """Glob match on POSIX build paths. "**/" spans zero or more folders."""
    return bool(compile_glob(pattern).match(path.lstrip("/")))


def _is_transient(p: Path) -> bool:
    n = p.name
    return n.startswith(".#") or n.endswith("~") or n == ".DS_Store"


class SiteBuild:
    """A build whose output already sits in a directory on disk."""

    def __init__(self, destination: Path, source: Optional[Path] = None) -> None:
        self._destination = Path(destination)
        self._source = Path(source) if source is not None else self._destination

    def source(self) -> Path:
        return self._source

    def destination(self) -> Path:
        return self._destination

    def match(self, pattern: str, path: str) -> bool:
        return glob_match(pattern, path)

    def debug(self, namespace: str) -> Callable[..., None]:
        return logging.getLogger(namespace).debug

    def load_files(self) -> Dict[str, BuildFile]:
        root = self._destination
        files: Dict[str, BuildFile] = {}
        if not root.is_dir():
            raise FileNotFoundError(f"build directory not found: {root}")

        for p in sorted(root.rglob("*")):
            if not p.is_file() or _is_transient(p):
                continue
            rel = p.relative_to(root).as_posix()
            files[rel] = BuildFile(contents=p.read_bytes(), mtime=p.stat().st_mtime)
        logger.debug("Loaded %d files from %s", len(files), root)
        return files

    def write_files(self, files: Files, only: Optional[Iterable[str]] = None) -> int:
        """Write files (or just the paths in only) below the destination."""
        keys = list(only) if only is not None else list(files)
        for rel in keys:
            target = self._destination / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(files[rel].contents)
        return len(keys)

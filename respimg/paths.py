"""Output naming for generated variants."""

from __future__ import annotations

import posixpath
import re
from typing import Optional

from .hashing import FINGERPRINT_LENGTH
from .settings import ORIGINAL_FORMAT, ResponsiveSettings

# Hash token plus one adjacent separator, e.g. "-[hash]".
_HASH_TOKEN_RE = re.compile(r"[-_.]\[hash\]|\[hash\][-_.]?")

PLACEHOLDER_SUFFIX = "-placeholder.jpg"


def split_name(path: str) -> tuple[str, str]:
    """Return (stem, lowercase extension without dot) of a build path."""
    name = posixpath.basename(path)
    stem, ext = posixpath.splitext(name)
    return stem, ext[1:].lower()


def resolve_format(path: str, fmt: str) -> str:
    if fmt == ORIGINAL_FORMAT:
        return split_name(path)[1]
    return fmt


def _render(pattern: str, stem: str, width: int, fmt: str, hash_: str) -> str:
    return (
        pattern.replace("[filename]", stem)
        .replace("[width]", str(width))
        .replace("[format]", fmt)
        .replace("[hash]", hash_)
    )


def variant_path(
    original_path: str,
    width: int,
    fmt: str,
    hash_: Optional[str],
    s: ResponsiveSettings,
) -> str:
    """
    Build the output path of one variant.

    "original" resolves to the source file's own extension. A missing hash
    substitutes an empty string, along with its separator so the name does
    not end up with a dangling "-".
    """
    stem, _ = split_name(original_path)
    out_fmt = resolve_format(original_path, fmt)
    pattern = s.output_pattern if hash_ else _HASH_TOKEN_RE.sub("", s.output_pattern)
    name = _render(pattern, stem, width, out_fmt, hash_ or "")
    return posixpath.join(s.output_dir, name)


def background_variant_path(original_path: str, width: int, fmt: str, s: ResponsiveSettings) -> str:
    """Hash-free name meant to be written by hand in stylesheets."""
    return variant_path(original_path, width, fmt, None, s)


def placeholder_path(original_path: str, s: ResponsiveSettings) -> str:
    stem, _ = split_name(original_path)
    return posixpath.join(s.output_dir, stem + PLACEHOLDER_SUFFIX)


def _name_regex(pattern: str) -> str:
    parts = re.split(r"(\[filename\]|\[width\]|\[format\]|\[hash\])", pattern)
    tokens = {
        "[filename]": r".+",
        "[width]": r"\d+",
        "[format]": r"[a-z0-9]+",
        "[hash]": r"[0-9a-f]{%d}" % FINGERPRINT_LENGTH,
    }
    return "".join(tokens.get(p, re.escape(p)) for p in parts)


def generated_name_re(s: ResponsiveSettings) -> re.Pattern:
    """Match filenames produced by either naming scheme, hashed or hash-free."""
    hashed = _name_regex(s.output_pattern)
    bare = _name_regex(_HASH_TOKEN_RE.sub("", s.output_pattern))
    placeholder = r".+" + re.escape(PLACEHOLDER_SUFFIX)
    return re.compile(rf"^(?:{hashed}|{bare}|{placeholder})$", re.IGNORECASE)


def is_generated(path: str, s: ResponsiveSettings) -> bool:
    """True for anything under the output dir or named like a variant."""
    norm = path.lstrip("/")
    if s.output_dir and (norm == s.output_dir or norm.startswith(s.output_dir + "/")):
        return True
    return bool(generated_name_re(s).match(posixpath.basename(norm)))

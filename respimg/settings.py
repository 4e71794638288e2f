from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


# "original" means re-encode in the source image's own format.
ORIGINAL_FORMAT = "original"

# Pillow save() keyword arguments per output format.
DEFAULT_FORMAT_OPTIONS: Dict[str, Dict[str, Any]] = {
    "avif": {"quality": 65, "speed": 5},
    "webp": {"quality": 80, "lossless": False, "method": 4},
    "jpeg": {"quality": 85, "progressive": True, "optimize": True},
    "png": {"compress_level": 8, "optimize": True},
}

DEFAULT_PLACEHOLDER: Dict[str, Any] = {"width": 50, "quality": 30, "blur": 10}


@dataclass(frozen=True)
class ResponsiveSettings:
    """
    Every behavioral switch of one build pass.

    Built once per plugin instance by build_settings(), never mutated.
    """

    # ----- Variants -----
    widths: Tuple[int, ...] = (320, 640, 960, 1280, 1920)
    # Preference order, first is most preferred.
    formats: Tuple[str, ...] = ("avif", "webp", ORIGINAL_FORMAT)
    format_options: Dict[str, Dict[str, Any]] = field(
        default_factory=lambda: deep_merge({}, DEFAULT_FORMAT_OPTIONS)
    )
    # Never generate widths larger than the source.
    skip_larger: bool = True

    # ----- Markup -----
    html_pattern: str = "**/*.html"
    img_selector: str = "img:not([data-no-responsive])"
    lazy: bool = True
    dimension_attributes: bool = True
    sizes: str = "(max-width: 768px) 100vw, 75vw"

    # ----- Output -----
    # Relative to the build destination.
    output_dir: str = "assets/images/responsive"
    # Tokens: [filename], [width], [format], [hash]
    output_pattern: str = "[filename]-[width]w-[hash].[format]"
    generate_metadata: bool = False

    # ----- Scheduling -----
    concurrency: int = 5

    # ----- Progressive loading -----
    is_progressive: bool = False
    placeholder: Dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_PLACEHOLDER))

    # ----- Background (unreferenced) images -----
    process_unused_images: bool = True
    image_pattern: str = "**/*.{jpg,jpeg,png,gif,webp,avif}"
    # Source-relative folders scanned on disk, first existing one wins.
    image_folders: Tuple[str, ...] = ("lib/assets/images",)

    def options_for(self, fmt: str) -> Dict[str, Any]:
        return dict(self.format_options.get(fmt) or {})


def deep_merge(target: Mapping[str, Any], source: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Merge source onto target, recursing into nested mappings.

    Keys missing from source keep the target's value; non-mapping values in
    source replace the target's value outright.
    """
    result: Dict[str, Any] = {}
    for key, value in target.items():
        result[key] = deep_merge({}, value) if isinstance(value, Mapping) else value

    for key, value in source.items():
        if isinstance(value, Mapping):
            base = result.get(key)
            result[key] = deep_merge(base if isinstance(base, Mapping) else {}, value)
        else:
            result[key] = value
    return result


def _defaults_as_dict() -> Dict[str, Any]:
    base = ResponsiveSettings()
    return {f.name: getattr(base, f.name) for f in fields(base)}


def _as_sequence(value: Any) -> Tuple[Any, ...]:
    """A lone scalar (or string) stands for a one-element list."""
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        return (value,)
    return tuple(value)


def _normalize_widths(widths: Any) -> Tuple[int, ...]:
    clean = set()
    for w in _as_sequence(widths):
        try:
            value = int(w)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid width %r", w)
            continue
        if value > 0:
            clean.add(value)
    return tuple(sorted(clean))


def _normalize_formats(formats: Any) -> Tuple[str, ...]:
    seen: List[str] = []
    for fmt in _as_sequence(formats):
        name = str(fmt).strip().lower()
        if name == "jpg":
            name = "jpeg"
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


def build_settings(options: Optional[Mapping[str, Any]] = None) -> ResponsiveSettings:
    """Resolve user options onto the defaults. Never raises."""
    merged = deep_merge(_defaults_as_dict(), {})
    known = set(merged)

    for key, value in (options or {}).items():
        if key not in known:
            logger.warning("Ignoring unknown option %r", key)
            continue
        if value is None:
            continue
        if isinstance(merged[key], Mapping) and not isinstance(value, Mapping):
            logger.warning("Ignoring option %r, expected a mapping", key)
            continue
        if isinstance(value, Mapping) and isinstance(merged[key], Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value

    merged["widths"] = _normalize_widths(merged["widths"])
    merged["formats"] = _normalize_formats(merged["formats"])

    merged["image_folders"] = tuple(str(p) for p in _as_sequence(merged["image_folders"]))

    try:
        merged["concurrency"] = max(1, int(merged["concurrency"]))
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid concurrency %r", merged["concurrency"])
        merged["concurrency"] = ResponsiveSettings.concurrency

    merged["output_dir"] = str(merged["output_dir"]).strip("/")
    return ResponsiveSettings(**merged)

"""Replace <img> elements with responsive <picture> markup."""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, List, Sequence

from bs4 import BeautifulSoup, Tag

from .results import SizedVariant
from .settings import ORIGINAL_FORMAT, ResponsiveSettings


# Attributes the rewrite sets itself; everything else is copied through.
MANAGED_ATTRS = {"src", "srcset", "alt", "class", "width", "height", "sizes"}


def attr_text(tag: Tag, name: str, default: str = "") -> str:
    """Attribute as a string; bs4 hands multi-valued ones (class) back as lists."""
    value = tag.get(name)
    if value is None:
        return default
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return str(value)


def group_by_format(variants: Sequence[SizedVariant]) -> Dict[str, List[SizedVariant]]:
    groups: Dict[str, List[SizedVariant]] = OrderedDict()
    for v in variants:
        groups.setdefault(v.format, []).append(v)
    for group in groups.values():
        group.sort(key=lambda v: v.width)
    return groups


def build_srcset(variants: Sequence[SizedVariant]) -> str:
    return ", ".join(f"/{v.path} {v.width}w" for v in sorted(variants, key=lambda v: v.width))


def largest(variants: Sequence[SizedVariant]) -> SizedVariant:
    return max(variants, key=lambda v: v.width)


def fallback_group(variants: Sequence[SizedVariant], s: ResponsiveSettings) -> List[SizedVariant]:
    """Variants in the source's own format, else the least preferred format generated."""
    groups = group_by_format(variants)
    own = [v for v in variants if v.format == v.original_format]
    if own:
        return sorted(own, key=lambda v: v.width)
    for fmt in reversed(s.formats):
        if fmt in groups:
            return groups[fmt]
    return next(iter(groups.values()), [])


def build_picture(
    soup: BeautifulSoup,
    img: Tag,
    variants: Sequence[SizedVariant],
    s: ResponsiveSettings,
) -> Tag:
    sizes = attr_text(img, "sizes") or s.sizes
    groups = group_by_format(variants)

    picture = soup.new_tag("picture")

    # One <source> per format, in preference order. The source's own format
    # is represented by the fallback <img>.
    declared = set()
    for fmt in s.formats:
        if fmt == ORIGINAL_FORMAT or fmt not in groups:
            continue
        declared.add(fmt)
        picture.append(
            soup.new_tag(
                "source",
                attrs={"type": f"image/{fmt}", "srcset": build_srcset(groups[fmt]), "sizes": sizes},
            )
        )

    fallback = soup.new_tag("img", attrs={"src": attr_text(img, "src"), "alt": attr_text(img, "alt")})

    own = [v for v in variants if v.format == v.original_format and v.format not in declared]
    if own:
        fallback["srcset"] = build_srcset(own)
        fallback["sizes"] = sizes

    class_name = attr_text(img, "class")
    if class_name:
        fallback["class"] = class_name

    if s.lazy:
        fallback["loading"] = "lazy"

    if s.dimension_attributes and variants:
        ref = largest(variants)
        fallback["width"] = str(ref.width)
        fallback["height"] = str(ref.height)

    for name in img.attrs:
        if name not in MANAGED_ATTRS:
            fallback[name] = attr_text(img, name)

    picture.append(fallback)
    return picture


"""Pick and apply the replacement markup for one image."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from bs4 import BeautifulSoup, Tag

from .picture import attr_text, build_picture
from .progressive import build_progressive_wrapper
from .results import Placeholder, SizedVariant
from .settings import ResponsiveSettings

logger = logging.getLogger(__name__)


def rewrite_image(
    soup: BeautifulSoup,
    img: Tag,
    variants: Sequence[SizedVariant],
    s: ResponsiveSettings,
    placeholder: Optional[Placeholder] = None,
) -> Optional[Tag]:
    """
    Swap img for its responsive replacement in place and return the new node.

    Returns None, leaving img untouched, when there are no variants. In
    progressive mode a failure to build the wrapper falls back to <picture>.
    """
    if not variants:
        return None

    replacement: Optional[Tag] = None
    if s.is_progressive and placeholder is not None:
        try:
            replacement = build_progressive_wrapper(soup, img, variants, placeholder, s)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning(
                "Progressive markup failed for %s, using <picture>: %s",
                attr_text(img, "src"),
                exc,
            )

    if replacement is None:
        replacement = build_picture(soup, img, variants, s)

    img.replace_with(replacement)
    return replacement

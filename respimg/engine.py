from __future__ import annotations

import asyncio
import io
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image, ImageFilter, UnidentifiedImageError

from .errors import ImageDecodeError
from .hashing import fingerprint
from .paths import background_variant_path, placeholder_path, variant_path
from .results import DensityVariant, Placeholder, SizedVariant
from .settings import ORIGINAL_FORMAT, ResponsiveSettings

logger = logging.getLogger(__name__)


# Pillow's names for the formats we can write.
FORMAT_TO_PIL = {
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
    "gif": "GIF",
    "tiff": "TIFF",
}

# Decoder names that encode like another format.
_FORMAT_ALIASES = {"mpo": "jpeg", "jpg": "jpeg", "tif": "tiff"}

# Sources whose "original" re-encode is never generated.
SKIP_ORIGINAL_SOURCES = {"webp"}


def decode_image(data: bytes, path: str) -> Image.Image:
    try:
        im = Image.open(io.BytesIO(data))
        im.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(path, str(exc)) from exc
    return im


def source_format(im: Image.Image) -> str:
    fmt = (im.format or "").lower()
    return _FORMAT_ALIASES.get(fmt, fmt)


def target_widths(intrinsic_width: int, s: ResponsiveSettings) -> List[int]:
    if s.skip_larger:
        return [w for w in s.widths if w <= intrinsic_width]
    return list(s.widths)


def should_skip(fmt: str, src_format: str, formats: Sequence[str]) -> bool:
    """
    "original" is dropped for WEBP sources and whenever the source format
    is already requested explicitly, where it would only duplicate (and
    overwrite) that format's output.
    """
    if fmt != ORIGINAL_FORMAT:
        return False
    return src_format in SKIP_ORIGINAL_SOURCES or src_format in formats


def _has_alpha(im: Image.Image) -> bool:
    if im.mode in ("RGBA", "LA", "PA"):
        return True
    if im.mode == "P" and "transparency" in im.info:
        return True
    return False


def _flatten_alpha(im: Image.Image, background_rgb: Tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    # Ensure we are in RGBA so alpha exists
    rgba = im.convert("RGBA")
    bg = Image.new("RGBA", rgba.size, background_rgb + (255,))
    comp = Image.alpha_composite(bg, rgba)
    return comp.convert("RGB")


def _prepare(im: Image.Image) -> Image.Image:
    # Palette and 16-bit modes resample badly; work in 8-bit RGB(A) or L.
    if im.mode in ("RGB", "RGBA", "L"):
        return im
    return im.convert("RGBA" if _has_alpha(im) else "RGB")


def _resize(im: Image.Image, width: int) -> Image.Image:
    w, h = im.size
    if width == w:
        return im.copy()
    height = max(1, round(h * width / w))
    return im.resize((width, height), Image.Resampling.LANCZOS)


def encode_image(im: Image.Image, out_format: str, options: Dict) -> bytes:
    """Encode im as out_format with Pillow save() options. Raises on failure."""
    pil_format = FORMAT_TO_PIL.get(out_format)
    if pil_format is None:
        raise ValueError(f"unsupported output format: {out_format}")

    # JPEG has no alpha channel, flatten onto white.
    if out_format == "jpeg" and _has_alpha(im):
        im = _flatten_alpha(im)

    buf = io.BytesIO()
    im.save(buf, format=pil_format, **options)
    return buf.getvalue()


def _encode_options(fmt: str, src_format: str, s: ResponsiveSettings) -> Tuple[str, Dict]:
    if fmt == ORIGINAL_FORMAT:
        return src_format, s.options_for(src_format)
    return fmt, s.options_for(fmt)


async def _encode_formats(
    resized: Image.Image,
    original_path: str,
    src_format: str,
    s: ResponsiveSettings,
) -> List[Tuple[str, str, bytes]]:
    """Encode one resized image into every configured format: (requested, actual, bytes)."""
    out: List[Tuple[str, str, bytes]] = []
    for fmt in s.formats:
        if should_skip(fmt, src_format, s.formats):
            logger.debug("Skipping %s variant of %s (%s source)", fmt, original_path, src_format)
            continue

        out_format, options = _encode_options(fmt, src_format, s)
        try:
            # Pillow keeps encoder state on the image, so formats of one width run one at a time.
            data = await asyncio.to_thread(encode_image, resized, out_format, options)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning(
                "Error generating %s variant for %s at width %s: %s",
                fmt,
                original_path,
                resized.width,
                exc,
            )
            continue
        out.append((fmt, out_format, data))
    return out


async def transcode_image(data: bytes, original_path: str, s: ResponsiveSettings) -> List[SizedVariant]:
    """
    Produce the (width x format) matrix for an image referenced in markup.

    Raises ImageDecodeError when data is not an image. A failing
    (width, format) pair is logged and left out of the result.
    """
    im = await asyncio.to_thread(decode_image, data, original_path)
    src_format = source_format(im)
    hash_ = fingerprint(data)

    widths = target_widths(im.width, s)
    if not widths:
        logger.debug("Skipping %s - no valid target widths", original_path)
        return []

    base = _prepare(im)

    async def for_width(width: int) -> List[SizedVariant]:
        try:
            resized = await asyncio.to_thread(_resize, base, width)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Error resizing %s to width %s: %s", original_path, width, exc)
            return []

        encoded = await _encode_formats(resized, original_path, src_format, s)
        return [
            SizedVariant(
                path=variant_path(original_path, width, fmt, hash_, s),
                contents=payload,
                width=width,
                height=resized.height,
                format=out_format,
                original_format=src_format,
            )
            for fmt, out_format, payload in encoded
        ]

    groups = await asyncio.gather(*(for_width(w) for w in widths))
    return [v for group in groups for v in group]


async def transcode_background(data: bytes, original_path: str, s: ResponsiveSettings) -> List[DensityVariant]:
    """
    Two density variants per format for CSS image-set() use: the intrinsic
    width labelled "1x" and half of it labelled "2x". Names carry no hash.
    """
    im = await asyncio.to_thread(decode_image, data, original_path)
    src_format = source_format(im)
    base = _prepare(im)

    targets = [("1x", im.width)]
    half = max(1, im.width // 2)
    if half != im.width:
        targets.append(("2x", half))

    variants: List[DensityVariant] = []
    for density, width in targets:
        resized = await asyncio.to_thread(_resize, base, width)
        for fmt, out_format, payload in await _encode_formats(resized, original_path, src_format, s):
            variants.append(
                DensityVariant(
                    path=background_variant_path(original_path, width, fmt, s),
                    contents=payload,
                    width=width,
                    height=resized.height,
                    format=out_format,
                    original_format=src_format,
                    density=density,
                )
            )
    return variants


def _render_placeholder(im: Image.Image, width: int, quality: int, blur: float) -> bytes:
    small = _resize(_prepare(im), max(1, min(width, im.width)))
    if blur:
        small = small.filter(ImageFilter.GaussianBlur(blur))
    return encode_image(small, "jpeg", {"quality": quality})


async def generate_placeholder(
    data: bytes,
    original_path: str,
    s: ResponsiveSettings,
    im: Optional[Image.Image] = None,
) -> Placeholder:
    """Small, blurred, low-quality JPEG shown while the real image loads."""
    if im is None:
        im = await asyncio.to_thread(decode_image, data, original_path)
    opts = s.placeholder
    contents = await asyncio.to_thread(
        _render_placeholder,
        im,
        int(opts.get("width", 50)),
        int(opts.get("quality", 30)),
        float(opts.get("blur", 10)),
    )
    return Placeholder(
        path=placeholder_path(original_path, s),
        contents=contents,
        original_width=im.width,
        original_height=im.height,
    )

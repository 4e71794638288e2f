from __future__ import annotations

import io
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from respimg.host import BuildFile, SiteBuild


def encode_test_image(width: int, height: int, fmt: str = "JPEG", mode: str = "RGB") -> bytes:
    color = (200, 80, 40, 128) if mode == "RGBA" else (200, 80, 40)
    im = Image.new(mode, (width, height), color)
    # A diagonal band so encoders have some detail to chew on.
    for x in range(0, width, max(1, width // 20)):
        im.putpixel((x, min(height - 1, x * height // max(1, width))), color[::-1])
    buf = io.BytesIO()
    im.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    return encode_test_image


@pytest.fixture
def site(tmp_path: Path) -> SiteBuild:
    dest = tmp_path / "build"
    dest.mkdir()
    src = tmp_path / "src"
    src.mkdir()
    return SiteBuild(dest, src)


def html_file(markup: str) -> BuildFile:
    return BuildFile(contents=markup.encode("utf-8"))

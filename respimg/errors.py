"""Exceptions raised by the image pipeline."""

from __future__ import annotations


class ImageDecodeError(Exception):
    """Raised when source bytes cannot be decoded as an image."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"cannot decode {path}: {reason}")
        self.path = path
        self.reason = reason

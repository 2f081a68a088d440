"""
Pillow-backed codec adapter.

Decoding happens once per source; every rendition is resized from that
decoded original so aspect ratio never drifts through an intermediate.
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import DecodeError, EncodeError
from .models import OutputSpec

logger = logging.getLogger(__name__)


def _normalize_mode(image: Image.Image) -> Image.Image:
    """Keep alpha when the source has any, otherwise flatten to RGB."""
    has_alpha = image.mode in {"RGBA", "LA", "PA"} or (
        image.mode == "P" and "transparency" in image.info
    )
    target = "RGBA" if has_alpha else "RGB"
    if image.mode == target:
        return image
    return image.convert(target)


class Codec:
    """Decode source bytes and encode resized renditions."""

    resample = Image.LANCZOS

    def decode(self, data: bytes) -> Image.Image:
        """
        Parse image bytes and apply EXIF orientation.

        Raises:
            DecodeError: for corrupt, truncated or unsupported data.
        """
        try:
            with Image.open(BytesIO(data)) as img:
                img.load()
                img = ImageOps.exif_transpose(img)
                return _normalize_mode(img).copy()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise DecodeError(f"Invalid image data: {exc}") from exc

    def encode(self, image: Image.Image, size: Tuple[int, int], spec: OutputSpec) -> bytes:
        """Resize `image` to `size` and encode it as `spec` dictates."""
        try:
            resized = image if image.size == size else image.resize(size, self.resample)
            buf = BytesIO()
            resized.save(buf, format=spec.image_format, **spec.params)
        except (OSError, ValueError, KeyError) as exc:
            raise EncodeError(f"Failed to encode {spec.kind.value}: {exc}") from exc
        return buf.getvalue()

"""
Per-image transcoding into the four fixed renditions.

Each rendition is attempted independently: a failed encode or write is
recorded on that rendition's outcome and the remaining ones still run.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

from .codec import Codec
from .errors import EncodeError, StorageError
from .models import (
    OUTPUT_SPECS,
    STANDARD_MAX_WIDTH,
    OutputSpec,
    PartialResult,
    RenditionOutcome,
    SourceImage,
    output_identifier,
)
from .storage import OutputStore, content_type_for

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_target_sizes(width: int, height: int) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """
    Return ((standard_w, standard_h), (double_w, double_h)).

    The standard width is capped at 1200px and the height follows the
    original aspect ratio; the double size is exactly twice the standard one.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image dimensions {width}x{height}")
    std_w = min(width, STANDARD_MAX_WIDTH)
    std_h = max(1, _round_half_up(std_w * height / width))
    return (std_w, std_h), (std_w * 2, std_h * 2)


class TranscodeWorker:
    def __init__(self, store: OutputStore, codec: Optional[Codec] = None) -> None:
        self.store = store
        self.codec = codec or Codec()

    def _produce(self, image, size: Tuple[int, int], spec: OutputSpec, base_output_name: str) -> RenditionOutcome:
        identifier = output_identifier(base_output_name, spec)
        try:
            data = self.codec.encode(image, size, spec)
            if not data:
                raise EncodeError(f"Encoder returned no data for {identifier}")
            self.store.write(identifier, data, content_type=content_type_for(identifier))
            written = self.store.size(identifier) if self.store.exists(identifier) else 0
        except (EncodeError, StorageError) as exc:
            logger.warning("Rendition %s failed: %s", identifier, exc)
            return RenditionOutcome(kind=spec.kind, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure producing %s: %s", identifier, exc)
            return RenditionOutcome(kind=spec.kind, error=f"Unexpected error: {exc}")

        if written <= 0:
            logger.warning("Rendition %s is missing or empty after write", identifier)
            return RenditionOutcome(kind=spec.kind, error="Output missing or empty after write")

        logger.debug("Wrote %s (%dKB)", identifier, round(written / 1024))
        return RenditionOutcome(kind=spec.kind, identifier=identifier)

    def transcode(self, source: SourceImage, base_output_name: str) -> PartialResult:
        """
        Produce up to four renditions of `source` named after `base_output_name`.

        Raises:
            DecodeError: when the source cannot be parsed at all.
        """
        image = self.codec.decode(source.read_bytes())
        try:
            standard, double = compute_target_sizes(*image.size)
            logger.info(
                "Image dimensions for %s: original %dx%d, standard %dx%d, double %dx%d",
                source.logical_name,
                image.size[0],
                image.size[1],
                standard[0],
                standard[1],
                double[0],
                double[1],
            )

            result = PartialResult(original_name=source.logical_name, base_output_name=base_output_name)
            for spec in OUTPUT_SPECS:
                size = double if spec.double else standard
                result.outcomes.append(self._produce(image, size, spec, base_output_name))
        finally:
            image.close()

        if result.failures:
            logger.warning(
                "%s: %d of %d renditions failed",
                source.logical_name,
                len(result.failures),
                len(OUTPUT_SPECS),
            )
        return result


def transcode(
    source: SourceImage,
    base_output_name: str,
    store: OutputStore,
    codec: Optional[Codec] = None,
) -> PartialResult:
    return TranscodeWorker(store, codec=codec).transcode(source, base_output_name)

"""
Data types passed between the name resolver, the transcode worker and the
batch orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


class RenditionKind(str, Enum):
    """Public keys of the four renditions, as used in the manifest."""

    PNG = "png"
    WEBP = "webp"
    PNG_2X = "png2x"
    WEBP_2X = "webp2x"


@dataclass(frozen=True)
class OutputSpec:
    kind: RenditionKind
    max_width: int
    image_format: str  # Pillow format name
    extension: str
    double: bool
    params: Dict[str, object]


STANDARD_MAX_WIDTH = 1200
DOUBLE_MAX_WIDTH = 2 * STANDARD_MAX_WIDTH

# PNG "quality 90" has no Pillow equivalent for truecolor output; the
# compression level is the only knob that applies.
_PNG_PARAMS: Dict[str, object] = {"compress_level": 9}
_WEBP_PARAMS: Dict[str, object] = {"quality": 90, "lossless": False}

OUTPUT_SPECS: tuple[OutputSpec, ...] = (
    OutputSpec(RenditionKind.PNG, STANDARD_MAX_WIDTH, "PNG", "png", False, _PNG_PARAMS),
    OutputSpec(RenditionKind.WEBP, STANDARD_MAX_WIDTH, "WEBP", "webp", False, _WEBP_PARAMS),
    OutputSpec(RenditionKind.PNG_2X, DOUBLE_MAX_WIDTH, "PNG", "png", True, _PNG_PARAMS),
    OutputSpec(RenditionKind.WEBP_2X, DOUBLE_MAX_WIDTH, "WEBP", "webp", True, _WEBP_PARAMS),
)


def output_identifier(base_output_name: str, spec: OutputSpec) -> str:
    """Build `<base>[@2x].<ext>`, the on-disk name and public key of a rendition."""
    scale = "@2x" if spec.double else ""
    return f"{base_output_name}{scale}.{spec.extension}"


def candidate_identifiers(base_output_name: str) -> List[str]:
    return [output_identifier(base_output_name, spec) for spec in OUTPUT_SPECS]


@dataclass
class SourceImage:
    """An uploaded image staged on local disk until its batch completes."""

    logical_name: str
    path: Path
    size_bytes: int

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


@dataclass
class RenditionOutcome:
    kind: RenditionKind
    identifier: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.identifier is not None and self.error is None


@dataclass
class PartialResult:
    """Outcome of transcoding one source; some renditions may have failed."""

    original_name: str
    base_output_name: str
    outcomes: List[RenditionOutcome] = field(default_factory=list)

    @property
    def produced(self) -> Dict[RenditionKind, str]:
        return {o.kind: o.identifier for o in self.outcomes if o.ok}  # type: ignore[misc]

    @property
    def failures(self) -> Dict[RenditionKind, str]:
        return {o.kind: o.error or "unknown error" for o in self.outcomes if not o.ok}


@dataclass
class BatchManifestEntry:
    original_name: str
    files: Dict[RenditionKind, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def complete(self) -> bool:
        return len(self.files) == len(OUTPUT_SPECS)

    def as_public_files(self) -> Dict[str, str]:
        # Keep the fixed rendition order regardless of completion order.
        return {spec.kind.value: self.files[spec.kind] for spec in OUTPUT_SPECS if spec.kind in self.files}


@dataclass
class BatchManifest:
    entries: List[BatchManifestEntry] = field(default_factory=list)

    @property
    def message(self) -> str:
        total = len(self.entries)
        incomplete = sum(1 for entry in self.entries if not entry.complete)
        if incomplete == 0:
            return f"Successfully processed {total} image(s)"
        return f"Processed {total} image(s); {incomplete} with missing renditions"

    def identifiers(self) -> List[str]:
        """Every produced identifier, in manifest order."""
        return [ident for entry in self.entries for ident in entry.as_public_files().values()]

from __future__ import annotations

import random
from io import BytesIO
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from rendition_service.models import SourceImage
from rendition_service.storage import MemoryStore


def image_bytes(size: tuple[int, int] = (64, 48), fmt: str = "PNG", color: str = "blue", mode: str = "RGB") -> bytes:
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def make_source(tmp_path: Path) -> Callable[..., SourceImage]:
    staging = tmp_path / "staging"
    staging.mkdir()
    counter = iter(range(10_000))

    def _make(name: str, data: bytes | None = None) -> SourceImage:
        payload = image_bytes() if data is None else data
        path = staging / f"upload-{next(counter)}"
        path.write_bytes(payload)
        return SourceImage(logical_name=name, path=path, size_bytes=len(payload))

    return _make


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    return image_bytes

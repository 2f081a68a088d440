"""Batch orchestration: manifests, limits, partial failures and cleanup."""

from __future__ import annotations

import re

import pytest

from rendition_service.codec import Codec
from rendition_service.errors import BatchTooLargeError, EmptyBatchError, EncodeError, StorageError
from rendition_service.models import RenditionKind
from rendition_service.pipeline import cleanup_sources, process_batch, purge_outputs
from rendition_service.storage import LocalStore, MemoryStore


class UnwritableStore(MemoryStore):
    def ensure_writable(self) -> None:
        raise StorageError("store unreachable")


class OneSpecFailsCodec(Codec):
    """Fails PNG@2x only for images of a marker size."""

    marker_size = (33, 33)

    def encode(self, image, size, spec):
        if image.size == self.marker_size and spec.kind is RenditionKind.PNG_2X:
            raise EncodeError("injected failure")
        return super().encode(image, size, spec)


def test_single_image_keeps_original_name(store, make_source, rng) -> None:
    source = make_source("cat.jpg")

    manifest = process_batch([source], store, rng=rng)

    [entry] = manifest.entries
    assert entry.original_name == "cat.jpg"
    assert entry.error is None
    assert entry.as_public_files() == {
        "png": "cat.png",
        "webp": "cat.webp",
        "png2x": "cat@2x.png",
        "webp2x": "cat@2x.webp",
    }
    assert manifest.message == "Successfully processed 1 image(s)"


def test_same_base_name_gets_distinct_suffixes(store, make_source, rng) -> None:
    manifest = process_batch([make_source("cat.jpg"), make_source("cat.png")], store, rng=rng)

    first, second = manifest.entries
    assert first.original_name == "cat.jpg"
    assert second.original_name == "cat.png"
    pattern = re.compile(r"^cat-[a-z0-9]{5}(@2x)?\.(png|webp)$")
    for entry in manifest.entries:
        assert len(entry.files) == 4
        assert all(pattern.match(ident) for ident in entry.files.values())
    assert first.files[RenditionKind.PNG] != second.files[RenditionKind.PNG]


def test_manifest_preserves_input_order(store, make_source, rng) -> None:
    names = [f"img{i}.png" for i in range(6)]

    manifest = process_batch([make_source(n) for n in names], store, rng=rng, max_workers=2)

    assert [e.original_name for e in manifest.entries] == names


def test_partial_failure_is_contained(store, make_source, make_image, rng) -> None:
    sources = [
        make_source("a.png"),
        make_source("b.png", make_image((33, 33))),
        make_source("c.png"),
    ]

    manifest = process_batch(sources, store, rng=rng, codec=OneSpecFailsCodec())

    assert len(manifest.entries) == 3
    a, b, c = manifest.entries
    assert len(a.files) == 4 and len(c.files) == 4
    assert set(b.files) == {RenditionKind.PNG, RenditionKind.WEBP, RenditionKind.WEBP_2X}
    assert manifest.message == "Processed 3 image(s); 1 with missing renditions"


def test_undecodable_image_becomes_error_entry(store, make_source, rng) -> None:
    sources = [make_source("good.png"), make_source("bad.png", b"garbage")]

    manifest = process_batch(sources, store, rng=rng)

    good, bad = manifest.entries
    assert len(good.files) == 4
    assert bad.files == {}
    assert bad.error and "Invalid image data" in bad.error


def test_sources_are_deleted_after_processing(store, make_source, rng) -> None:
    sources = [make_source("good.png"), make_source("bad.png", b"garbage")]

    process_batch(sources, store, rng=rng)

    assert not any(s.path.exists() for s in sources)


def test_empty_batch_is_rejected(store) -> None:
    with pytest.raises(EmptyBatchError):
        process_batch([], store)


def test_batch_size_boundary(store, make_source, rng) -> None:
    ten = [make_source(f"img{i}.png") for i in range(10)]
    assert len(process_batch(ten, store, rng=rng).entries) == 10

    eleven = [make_source(f"other{i}.png") for i in range(11)]
    with pytest.raises(BatchTooLargeError):
        process_batch(eleven, store, rng=rng)
    assert not any(s.path.exists() for s in eleven)


def test_unreachable_store_fails_the_batch(make_source) -> None:
    source = make_source("cat.png")

    with pytest.raises(StorageError):
        process_batch([source], UnwritableStore())
    assert not source.path.exists()


def test_identifiers_lists_every_output(store, make_source, rng) -> None:
    manifest = process_batch([make_source("cat.png"), make_source("dog.png")], store, rng=rng)

    assert manifest.identifiers() == [
        "cat.png", "cat.webp", "cat@2x.png", "cat@2x.webp",
        "dog.png", "dog.webp", "dog@2x.png", "dog@2x.webp",
    ]
    assert all(store.exists(ident) for ident in manifest.identifiers())


def test_cleanup_ignores_missing_files(make_source) -> None:
    source = make_source("cat.png")
    source.path.unlink()

    cleanup_sources([source])


def test_purge_outputs_only_removes_renditions(store) -> None:
    store.write("cat.png", b"1")
    store.write("cat@2x.webp", b"2")
    store.write("notes.txt", b"3")

    assert purge_outputs(store) == 2
    assert store.list() == ["notes.txt"]


def test_overlong_filename_does_not_abort_the_batch(tmp_path, make_source, rng) -> None:
    store = LocalStore(tmp_path / "outputs")
    sources = [make_source("ok.jpg"), make_source("x" * 260 + ".jpg")]

    manifest = process_batch(sources, store, rng=rng)

    ok, long_name = manifest.entries
    assert ok.as_public_files()["png"] == "ok.png"
    assert long_name.original_name == "x" * 260 + ".jpg"
    assert len(long_name.files) == 4
    assert all(store.exists(ident) for ident in manifest.identifiers())


def test_colliding_names_write_distinct_outputs(store, make_source, make_image, rng) -> None:
    sources = [
        make_source("cat.jpg", make_image(color="blue")),
        make_source("cat@2x.jpg", make_image(color="red")),
    ]

    manifest = process_batch(sources, store, rng=rng)

    first, second = (set(entry.files.values()) for entry in manifest.entries)
    assert len(first) == 4 and len(second) == 4
    assert first.isdisjoint(second)

"""Bulk download archive assembly."""

from __future__ import annotations

import zipfile
from io import BytesIO

import pytest

from rendition_service.archive import build_archive, identifier_from_reference
from rendition_service.errors import EmptyListError


def _entries(data: bytes) -> dict:
    with zipfile.ZipFile(BytesIO(data)) as archive:
        return {info.filename: archive.read(info) for info in archive.infolist()}


def test_archive_contains_every_existing_file(store) -> None:
    payloads = {"cat.png": b"png-bytes", "cat.webp": b"webp-bytes", "cat@2x.png": b"\x89PNG" * 100}
    for key, data in payloads.items():
        store.write(key, data)

    assert _entries(build_archive(list(payloads), store)) == payloads


def test_archive_uses_max_compression_and_flat_names(store) -> None:
    store.write("cat.png", b"a" * 4096)

    with zipfile.ZipFile(BytesIO(build_archive(["cat.png"], store))) as archive:
        [info] = archive.infolist()
    assert info.filename == "cat.png"
    assert info.compress_type == zipfile.ZIP_DEFLATED
    assert info.compress_size < info.file_size


def test_missing_and_malformed_entries_are_skipped(store) -> None:
    store.write("dog.webp", b"dog")

    data = build_archive(["missing.png", "dog.webp", "..", ""], store)

    assert _entries(data) == {"dog.webp": b"dog"}


def test_retrieval_paths_are_accepted(store) -> None:
    store.write("cat@2x.webp", b"x")

    assert _entries(build_archive(["/images/cat@2x.webp"], store)) == {"cat@2x.webp": b"x"}


def test_duplicates_are_added_once(store) -> None:
    store.write("cat.png", b"x")

    assert list(_entries(build_archive(["cat.png", "cat.png"], store))) == ["cat.png"]


def test_all_missing_yields_an_empty_but_valid_archive(store) -> None:
    assert _entries(build_archive(["nope.png"], store)) == {}


def test_empty_list_is_rejected(store) -> None:
    with pytest.raises(EmptyListError):
        build_archive([], store)


def test_identifier_from_reference() -> None:
    assert identifier_from_reference("cat.png") == "cat.png"
    assert identifier_from_reference("/images/cat.png") == "cat.png"
    assert identifier_from_reference("http://host/images/cat@2x.webp") == "cat@2x.webp"

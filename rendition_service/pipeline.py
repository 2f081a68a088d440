"""
Batch orchestration pipeline.

`process_batch` is the main entry point used by both the HTTP API and the
local test script. It keeps orchestration simple:
staged uploads -> name resolution -> parallel transcodes -> manifest,
with the staged uploads removed afterwards whatever happened.
"""

from __future__ import annotations

import logging
import random
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence

from .codec import Codec
from .errors import BatchTooLargeError, DecodeError, EmptyBatchError, StorageError
from .models import BatchManifest, BatchManifestEntry, PartialResult, SourceImage
from .naming import resolve_names
from .storage import OutputStore
from .transcode import TranscodeWorker

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 10
OUTPUT_EXTENSIONS = (".png", ".webp")


def validate_batch_size(count: int, max_batch_size: int = DEFAULT_MAX_BATCH_SIZE) -> None:
    if count == 0:
        raise EmptyBatchError("No image files uploaded")
    if count > max_batch_size:
        raise BatchTooLargeError(f"Too many files: {count} uploaded, at most {max_batch_size} allowed")


def cleanup_sources(sources: Iterable[SourceImage]) -> None:
    """Delete staged uploads; failures are logged and never raised."""
    for source in sources:
        try:
            source.path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.error("Error deleting staged upload %s: %s", source.path, exc)


def purge_outputs(store: OutputStore) -> int:
    """Remove every rendition currently in the store. Returns the count removed."""
    removed = 0
    for key in store.list():
        if not key.lower().endswith(OUTPUT_EXTENSIONS):
            continue
        try:
            store.delete(key)
            removed += 1
        except StorageError as exc:
            logger.error("Error deleting output %s: %s", key, exc)
    logger.info("Purged %d previous output file(s)", removed)
    return removed


def _to_entry(result: PartialResult) -> BatchManifestEntry:
    return BatchManifestEntry(original_name=result.original_name, files=result.produced)


def process_batch(
    sources: Sequence[SourceImage],
    store: OutputStore,
    *,
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    max_workers: Optional[int] = None,
    codec: Optional[Codec] = None,
    rng: Optional[random.Random] = None,
) -> BatchManifest:
    """
    Transcode a batch and return its manifest in input order.

    Per-image failures become manifest entries with no files and an error
    message. Only store-level failures (store unreachable before any work
    starts) propagate, as StorageError.
    """
    try:
        validate_batch_size(len(sources), max_batch_size)
        logger.info("%d file(s) uploaded", len(sources))

        store.ensure_writable()
        assignments = resolve_names([s.logical_name for s in sources], store, rng=rng)

        worker = TranscodeWorker(store, codec=codec)
        pool_size = min(max_workers or len(sources), len(sources))
        with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="transcode") as executor:
            futures = [
                executor.submit(worker.transcode, source, assignment.base_output_name)
                for source, assignment in zip(sources, assignments)
            ]

            entries: List[BatchManifestEntry] = []
            for source, future in zip(sources, futures):
                try:
                    entries.append(_to_entry(future.result()))
                except DecodeError as exc:
                    logger.error("Error processing image %s: %s", source.logical_name, exc)
                    entries.append(BatchManifestEntry(original_name=source.logical_name, error=str(exc)))
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Unexpected failure processing %s: %s", source.logical_name, exc)
                    entries.append(
                        BatchManifestEntry(
                            original_name=source.logical_name,
                            error=f"Failed to process {source.logical_name}: {exc}",
                        )
                    )
    finally:
        cleanup_sources(sources)

    manifest = BatchManifest(entries=entries)
    logger.info(manifest.message)
    return manifest

"""Bulk download: bundle stored renditions into a single zip archive."""

from __future__ import annotations

import logging
import zipfile
from io import BytesIO
from typing import List, Sequence

from .errors import EmptyListError, InvalidKeyError
from .storage import OutputStore, validate_key

logger = logging.getLogger(__name__)


def identifier_from_reference(reference: str) -> str:
    """Accept either `cat.png` or a retrieval path such as `/images/cat.png`."""
    return reference.rstrip("/").split("/")[-1]


def build_archive(identifiers: Sequence[str], store: OutputStore) -> bytes:
    """
    Return a finished zip containing every identifier that exists in the store.

    Missing or malformed identifiers are skipped with a warning. Entries are
    stored flat under their identifier at maximum deflate compression, and
    the bytes are only returned once the archive is closed.

    Raises:
        EmptyListError: when `identifiers` is empty.
    """
    if not identifiers:
        raise EmptyListError("No files specified for download")

    logger.info("Preparing to archive %d files", len(identifiers))
    added: List[str] = []
    buf = BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for reference in identifiers:
            name = identifier_from_reference(reference)
            try:
                validate_key(name)
                data = store.read(name)
            except (KeyError, InvalidKeyError):
                logger.warning("File %s does not exist, skipping", reference)
                continue
            if name in added:
                continue
            archive.writestr(name, data)
            added.append(name)

    logger.info("Archived %d of %d requested files", len(added), len(identifiers))
    return buf.getvalue()

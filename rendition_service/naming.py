"""
Output name resolution for an upload batch.

Uploads sharing a grouping key (file name without extension) would write the
same four outputs, so every member of such a group gets a random suffix. A
lone upload keeps its plain name unless one of its outputs is already in the
store from an earlier batch, or is already claimed by another upload of the
same batch (`cat.jpg` and `cat@2x.jpg` both map onto `cat@2x.png`).
"""

from __future__ import annotations

import logging
import random
import string
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence, Set

from .models import candidate_identifiers
from .storage import OutputStore

logger = logging.getLogger(__name__)

SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
SUFFIX_LENGTH = 5
MAX_SUFFIX_ATTEMPTS = 32
DEFAULT_GROUPING_KEY = "image"

# Longest identifier is `<key>-<suffix>@2x.webp` and must fit a 255-byte filename.
MAX_FILENAME_BYTES = 255
MAX_GROUPING_KEY_BYTES = MAX_FILENAME_BYTES - (1 + SUFFIX_LENGTH + len("@2x.webp"))


@dataclass(frozen=True)
class NameAssignment:
    logical_name: str
    grouping_key: str
    base_output_name: str
    needs_suffix: bool


def _truncate_utf8(value: str, max_bytes: int) -> str:
    return value.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore")


def grouping_key(logical_name: str) -> str:
    """`photos/cat.final.jpg` -> `cat.final`, capped at MAX_GROUPING_KEY_BYTES."""
    name = PurePosixPath(logical_name.replace("\\", "/")).name
    stem = PurePosixPath(name).stem if name else ""
    return _truncate_utf8(stem, MAX_GROUPING_KEY_BYTES) or DEFAULT_GROUPING_KEY


def generate_suffix(rng: random.Random, length: int = SUFFIX_LENGTH) -> str:
    return "".join(rng.choice(SUFFIX_ALPHABET) for _ in range(length))


def _any_output_exists(store: OutputStore, base_output_name: str) -> bool:
    return any(store.exists(ident) for ident in candidate_identifiers(base_output_name))


class NameResolver:
    def __init__(self, store: OutputStore, rng: Optional[random.Random] = None) -> None:
        self.store = store
        self.rng = rng or random.SystemRandom()

    def _is_free(self, base: str, claimed: Set[str]) -> bool:
        return claimed.isdisjoint(candidate_identifiers(base)) and not _any_output_exists(self.store, base)

    def _suffixed_name(self, key: str, claimed: Set[str]) -> str:
        candidate = f"{key}-{generate_suffix(self.rng)}"
        for _ in range(MAX_SUFFIX_ATTEMPTS):
            if self._is_free(candidate, claimed):
                break
            candidate = f"{key}-{generate_suffix(self.rng)}"
        else:
            logger.warning("Could not find a fresh suffix for %s; using %s", key, candidate)
        return candidate

    def resolve(self, logical_names: Sequence[str]) -> List[NameAssignment]:
        """
        Assign a base output name to every logical name, in input order.

        No two assignments share an output identifier. The store is only
        read here, before any output of the batch is written.
        """
        groups: "OrderedDict[str, List[int]]" = OrderedDict()
        for index, name in enumerate(logical_names):
            groups.setdefault(grouping_key(name), []).append(index)

        # Identifiers handed out so far in this batch.
        claimed: Set[str] = set()
        # Plain identifiers of every group, kept away from random draws.
        plain: Set[str] = {ident for key in groups for ident in candidate_identifiers(key)}

        assigned: Dict[int, NameAssignment] = {}
        for key, members in groups.items():
            if len(members) > 1:
                logger.info("Group %s has %d files, adding suffixes to all", key, len(members))
                needs_suffix = True
            elif not claimed.isdisjoint(candidate_identifiers(key)):
                logger.info("Outputs for %s clash with another upload in this batch, adding a suffix", key)
                needs_suffix = True
            elif _any_output_exists(self.store, key):
                logger.info("Outputs for %s already exist, adding a suffix", key)
                needs_suffix = True
            else:
                needs_suffix = False

            for index in members:
                base = self._suffixed_name(key, claimed | plain) if needs_suffix else key
                claimed.update(candidate_identifiers(base))
                assigned[index] = NameAssignment(
                    logical_name=logical_names[index],
                    grouping_key=key,
                    base_output_name=base,
                    needs_suffix=needs_suffix,
                )
                logger.info("Resolved %s -> %s", logical_names[index], base)

        return [assigned[i] for i in range(len(logical_names))]


def resolve_names(
    logical_names: Sequence[str],
    store: OutputStore,
    rng: Optional[random.Random] = None,
) -> List[NameAssignment]:
    return NameResolver(store, rng=rng).resolve(logical_names)

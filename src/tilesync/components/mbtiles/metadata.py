"""Flat key/value metadata diff and merge."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterable, List, Mapping

from tilesync.core.errors import MetadataConflict
from tilesync.core.interfaces import TileSink
from tilesync.core.schemas import RESERVED_METADATA_KEYS, MetadataAction, MetadataChange

logger = logging.getLogger(__name__)


class MergePolicy(str, Enum):
    STRICT = "strict"
    OVERWRITE = "overwrite"


def is_reserved(name: str) -> bool:
    return name in RESERVED_METADATA_KEYS


def user_metadata(metadata: Mapping[str, str]) -> Dict[str, str]:
    return {k: v for k, v in metadata.items() if not is_reserved(k)}


def diff_metadata(base: Mapping[str, str], target: Mapping[str, str]) -> List[MetadataChange]:
    """Changes turning ``base`` into ``target``, ordered by key, reserved keys excluded."""
    base = user_metadata(base)
    target = user_metadata(target)
    changes: List[MetadataChange] = []
    for name in sorted(base.keys() | target.keys()):
        if name not in target:
            changes.append(MetadataChange(name, MetadataAction.REMOVE))
        elif name not in base:
            changes.append(MetadataChange(name, MetadataAction.ADD, target[name]))
        elif base[name] != target[name]:
            changes.append(MetadataChange(name, MetadataAction.EDIT, target[name]))
    return changes


class MetadataMerger:
    """Applies metadata changes with edit / add / remove semantics.

    An ``add`` that collides with a different existing value raises
    MetadataConflict unless the policy is OVERWRITE. Reserved aggregate-hash
    keys are never touched.
    """

    def __init__(self, policy: MergePolicy = MergePolicy.STRICT):
        self.policy = policy

    def _resolve(self, current: Mapping[str, str], change: MetadataChange) -> bool:
        """Validate one change against ``current``; False means skip it."""
        if is_reserved(change.name):
            logger.warning("Ignoring change to reserved metadata key '%s'", change.name)
            return False
        existing = current.get(change.name)
        if change.action is MetadataAction.ADD and existing is not None:
            if existing == change.value:
                return False
            if self.policy is not MergePolicy.OVERWRITE:
                raise MetadataConflict(change.name, existing, change.value)
            logger.info("Overwriting metadata '%s' (was '%s')", change.name, existing)
        elif change.action is MetadataAction.EDIT and existing is None:
            logger.debug("Edit of missing metadata key '%s' inserts it", change.name)
        elif change.action is MetadataAction.REMOVE and existing is None:
            return False
        return True

    def merge(self, current: Mapping[str, str], changes: Iterable[MetadataChange]) -> Dict[str, str]:
        merged = dict(current)
        for change in changes:
            if not self._resolve(merged, change):
                continue
            if change.action is MetadataAction.REMOVE:
                merged.pop(change.name, None)
            else:
                merged[change.name] = change.value
        return merged

    def apply(self, store: TileSink, changes: Iterable[MetadataChange]) -> int:
        """Apply changes to a store's metadata table; returns the number written."""
        current = dict(store.get_metadata())
        applied = 0
        for change in changes:
            if not self._resolve(current, change):
                continue
            if change.action is MetadataAction.REMOVE:
                current.pop(change.name, None)
                store.put_metadata(change.name, None)
            else:
                current[change.name] = change.value
                store.put_metadata(change.name, change.value)
            applied += 1
        return applied

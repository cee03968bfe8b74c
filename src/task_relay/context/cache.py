"""Per-(task, slice) snapshot cache and field-level differencer."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from task_relay.context.models import (
    ChangeType,
    ContextDiff,
    ContextSlice,
    ContextSnapshot,
    DiffKind,
    FieldChange,
    SliceNotFound,
)
from task_relay.context.snapshot import ContextSnapshotter
from task_relay.workflow.lifecycle import coerce_enum, storage_errors

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CacheKey:
    task_id: str
    slice: ContextSlice


@dataclass(slots=True, frozen=True)
class CacheEntry:
    snapshot: ContextSnapshot
    digest: str
    generated_at: datetime


class ContextCache:
    """Last snapshot per key; last write wins, entries are replaced whole.

    ``max_entries=0`` keeps every key. A positive bound evicts the least recently used key.
    """

    def __init__(self, max_entries: int = 0) -> None:
        if max_entries < 0:
            raise ValueError("max_entries must be >= 0.")
        self.max_entries = max_entries
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: CacheKey) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def put(self, snapshot: ContextSnapshot) -> CacheEntry:
        key = CacheKey(task_id=snapshot.task_id, slice=snapshot.slice)
        entry = CacheEntry(
            snapshot=snapshot,
            digest=snapshot.digest,
            generated_at=snapshot.generated_at,
        )
        self._entries[key] = entry
        self._entries.move_to_end(key)
        if self.max_entries:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(
                    "Evicted context cache entry %s/%s",
                    evicted.task_id,
                    evicted.slice.value,
                )
        return entry

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


def diff_payloads(old: dict[str, Any] | None, new: dict[str, Any]) -> list[FieldChange]:
    """Compare top-level fields; nested values are compared deeply as whole values."""

    previous = old or {}
    changes: list[FieldChange] = []
    for name in sorted(set(previous) | set(new)):
        if name not in previous:
            changes.append(FieldChange(name=name, change=ChangeType.ADDED, new=new[name]))
        elif name not in new:
            changes.append(FieldChange(name=name, change=ChangeType.REMOVED, old=previous[name]))
        elif previous[name] != new[name]:
            changes.append(
                FieldChange(
                    name=name,
                    change=ChangeType.MODIFIED,
                    old=previous[name],
                    new=new[name],
                ),
            )
    return changes


class ContextService:
    """Serves fresh snapshots and diffs against what a caller last saw."""

    def __init__(self, *, snapshotter: ContextSnapshotter, cache: ContextCache) -> None:
        self.snapshotter = snapshotter
        self.cache = cache

    def get_context(
        self,
        task_id: str,
        slice_: ContextSlice | str,
    ) -> ContextSnapshot | SliceNotFound:
        """Build a fresh snapshot and write it through to the cache."""

        snapshot = self._build(task_id, slice_)
        if isinstance(snapshot, ContextSnapshot):
            self.cache.put(snapshot)
        return snapshot

    def get_context_diff(
        self,
        task_id: str,
        slice_: ContextSlice | str,
        caller_digest: str | None = None,
    ) -> ContextDiff | SliceNotFound:
        """Compare a fresh snapshot with ``caller_digest`` and the cached previous snapshot."""

        snapshot = self._build(task_id, slice_)
        if isinstance(snapshot, SliceNotFound):
            return snapshot

        if caller_digest is None:
            self.cache.put(snapshot)
            return ContextDiff(
                task_id=snapshot.task_id,
                slice=snapshot.slice,
                kind=DiffKind.FULL,
                digest=snapshot.digest,
                snapshot=snapshot,
            )

        if caller_digest == snapshot.digest:
            self.cache.put(snapshot)
            return ContextDiff(
                task_id=snapshot.task_id,
                slice=snapshot.slice,
                kind=DiffKind.UNCHANGED,
                digest=snapshot.digest,
            )

        previous = self.cache.get(CacheKey(task_id=snapshot.task_id, slice=snapshot.slice))
        changes = diff_payloads(
            previous.snapshot.payload if previous is not None else None,
            snapshot.payload,
        )
        self.cache.put(snapshot)
        return ContextDiff(
            task_id=snapshot.task_id,
            slice=snapshot.slice,
            kind=DiffKind.CHANGED,
            digest=snapshot.digest,
            base_digest=previous.digest if previous is not None else None,
            changes=changes,
        )

    def _build(self, task_id: str, slice_: ContextSlice | str) -> ContextSnapshot | SliceNotFound:
        context_slice = coerce_enum(ContextSlice, slice_, label="context slice")
        with storage_errors("get_context", task_id):
            return self.snapshotter.build(task_id, context_slice)

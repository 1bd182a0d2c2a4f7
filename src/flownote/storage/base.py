"""flownote.storage.base

Document storage interfaces.

A document is an ordered list of units (notebook code cells), each with a
source string and a JSON metadata mapping, plus document-level metadata.
FlowNote never writes to a store piecemeal: a `DocumentTransaction` stages all
writes of one pass and hands them to `DocumentStore.apply` in one call.

Change encoding (`DocumentChanges`):
- metadata values of `None` delete the key,
- updates apply first, then deletes, then inserts (in staging order),
- an insert with `index=None` appends.
"""

from __future__ import annotations

import copy
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class UnitRecord:
    unit_id: str
    index: int
    source: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UnitInsert:
    unit_id: str
    source: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    index: Optional[int] = None


@dataclass
class DocumentChanges:
    """Staged writes for one document."""

    unit_metadata: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    unit_sources: Dict[str, str] = field(default_factory=dict)
    document_metadata: Dict[str, Any] = field(default_factory=dict)
    inserts: List[UnitInsert] = field(default_factory=list)
    deletes: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.unit_metadata or self.unit_sources or self.document_metadata or self.inserts or self.deletes)

    @property
    def structural(self) -> bool:
        """True when units were added or removed."""
        return bool(self.inserts or self.deletes)

    def touched_units(self) -> List[str]:
        ids: List[str] = []
        for uid in [*self.unit_metadata, *self.unit_sources, *self.deletes, *(i.unit_id for i in self.inserts)]:
            if uid not in ids:
                ids.append(uid)
        return ids


DocumentListener = Callable[[DocumentChanges], None]


def _merge_metadata(target: Dict[str, Any], updates: Dict[str, Any]) -> None:
    for key, value in updates.items():
        if value is None:
            target.pop(key, None)
        else:
            target[key] = copy.deepcopy(value)


def apply_changes(
    units: List[UnitRecord],
    document_metadata: Dict[str, Any],
    changes: DocumentChanges,
) -> Tuple[List[UnitRecord], Dict[str, Any]]:
    """Pure application of `changes` to a unit list and document metadata.

    Changes addressed to unknown unit ids are ignored.
    """
    rows: List[Dict[str, Any]] = [
        {"unit_id": u.unit_id, "source": u.source, "metadata": copy.deepcopy(u.metadata)} for u in units
    ]
    by_id = {r["unit_id"]: r for r in rows}

    for uid, updates in changes.unit_metadata.items():
        row = by_id.get(uid)
        if row is not None:
            _merge_metadata(row["metadata"], updates)
    for uid, source in changes.unit_sources.items():
        row = by_id.get(uid)
        if row is not None:
            row["source"] = str(source)

    deleted = set(changes.deletes)
    rows = [r for r in rows if r["unit_id"] not in deleted]

    for ins in changes.inserts:
        if ins.unit_id in by_id and ins.unit_id not in deleted:
            continue
        row = {"unit_id": ins.unit_id, "source": ins.source, "metadata": copy.deepcopy(ins.metadata)}
        by_id[ins.unit_id] = row
        if ins.index is None or ins.index >= len(rows):
            rows.append(row)
        else:
            rows.insert(max(0, ins.index), row)

    doc_meta = copy.deepcopy(document_metadata)
    _merge_metadata(doc_meta, changes.document_metadata)

    out = [UnitRecord(unit_id=r["unit_id"], index=i, source=r["source"], metadata=r["metadata"]) for i, r in enumerate(rows)]
    return out, doc_meta


def new_unit_id() -> str:
    return uuid.uuid4().hex[:12]


class DocumentStore(ABC):
    """Ordered units plus document metadata, with change notification."""

    def __init__(self) -> None:
        self._listeners: List[DocumentListener] = []

    @abstractmethod
    def list_units(self) -> List[UnitRecord]: ...

    @abstractmethod
    def get_document_metadata(self) -> Dict[str, Any]: ...

    @abstractmethod
    def _apply(self, changes: DocumentChanges) -> None: ...

    def apply(self, changes: DocumentChanges) -> bool:
        """Apply all changes at once; returns False when there was nothing to do."""
        if changes.is_empty():
            return False
        self._apply(changes)
        self._emit(changes)
        return True

    def transaction(self) -> "DocumentTransaction":
        return DocumentTransaction(self)

    def subscribe(self, listener: DocumentListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def _emit(self, changes: DocumentChanges) -> None:
        for listener in list(self._listeners):
            try:
                listener(changes)
            except Exception as e:
                logger.error("Document listener failed", error=str(e))


class DocumentTransaction:
    """Staged writes against a snapshot of one store.

    Reads (`units`, `unit_metadata`, `document_metadata`) see the snapshot with
    staged writes applied. Writes equal to the current value are not staged.
    Used as a context manager the transaction commits on normal exit and
    discards its stage when the block raises.
    """

    def __init__(self, store: DocumentStore):
        self._store = store
        self._base_units = store.list_units()
        self._base_meta = store.get_document_metadata()
        self._changes = DocumentChanges()
        self._view: Optional[Tuple[List[UnitRecord], Dict[str, Any]]] = None
        self._closed = False

    def __enter__(self) -> "DocumentTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.discard()

    def _current(self) -> Tuple[List[UnitRecord], Dict[str, Any]]:
        if self._view is None:
            self._view = apply_changes(self._base_units, self._base_meta, self._changes)
        return self._view

    def _touch(self) -> None:
        if self._closed:
            raise RuntimeError("Transaction already closed")
        self._view = None

    # Reads

    def units(self) -> List[UnitRecord]:
        return list(self._current()[0])

    def unit(self, unit_id: str) -> Optional[UnitRecord]:
        return next((u for u in self._current()[0] if u.unit_id == unit_id), None)

    def unit_metadata(self, unit_id: str) -> Dict[str, Any]:
        u = self.unit(unit_id)
        return copy.deepcopy(u.metadata) if u is not None else {}

    def document_metadata(self) -> Dict[str, Any]:
        return copy.deepcopy(self._current()[1])

    @property
    def changes(self) -> DocumentChanges:
        return self._changes

    # Writes

    def _pending_insert(self, unit_id: str) -> Optional[int]:
        for i, ins in enumerate(self._changes.inserts):
            if ins.unit_id == unit_id:
                return i
        return None

    def set_unit_metadata(self, unit_id: str, key: str, value: Any) -> bool:
        u = self.unit(unit_id)
        if u is None:
            return False
        if value is None and key not in u.metadata:
            return False
        if value is not None and key in u.metadata and u.metadata[key] == value:
            return False
        self._touch()
        pending = self._pending_insert(unit_id)
        if pending is not None:
            ins = self._changes.inserts[pending]
            meta = copy.deepcopy(ins.metadata)
            _merge_metadata(meta, {key: value})
            self._changes.inserts[pending] = replace(ins, metadata=meta)
        else:
            self._changes.unit_metadata.setdefault(unit_id, {})[key] = copy.deepcopy(value)
        return True

    def set_source(self, unit_id: str, source: str) -> bool:
        u = self.unit(unit_id)
        if u is None or u.source == source:
            return False
        self._touch()
        pending = self._pending_insert(unit_id)
        if pending is not None:
            self._changes.inserts[pending] = replace(self._changes.inserts[pending], source=source)
        else:
            self._changes.unit_sources[unit_id] = source
        return True

    def set_document_metadata(self, key: str, value: Any) -> bool:
        meta = self._current()[1]
        if value is None and key not in meta:
            return False
        if value is not None and key in meta and meta[key] == value:
            return False
        self._touch()
        self._changes.document_metadata[key] = copy.deepcopy(value)
        return True

    def insert_unit(self, source: str = "", metadata: Optional[Dict[str, Any]] = None, index: Optional[int] = None) -> str:
        uid = new_unit_id()
        self._touch()
        self._changes.inserts.append(
            UnitInsert(unit_id=uid, source=source, metadata=copy.deepcopy(metadata or {}), index=index)
        )
        return uid

    def delete_unit(self, unit_id: str) -> bool:
        if self.unit(unit_id) is None:
            return False
        self._touch()
        pending = self._pending_insert(unit_id)
        if pending is not None:
            del self._changes.inserts[pending]
        else:
            self._changes.deletes.append(unit_id)
        self._changes.unit_metadata.pop(unit_id, None)
        self._changes.unit_sources.pop(unit_id, None)
        return True

    # Lifecycle

    def commit(self) -> bool:
        if self._closed:
            return False
        self._closed = True
        return self._store.apply(self._changes)

    def discard(self) -> None:
        self._closed = True
        self._changes = DocumentChanges()
        self._view = None

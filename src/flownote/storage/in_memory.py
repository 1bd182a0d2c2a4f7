"""flownote.storage.in_memory

In-memory document store (testing/dev).

Besides the `DocumentStore` interface it offers host-side edit helpers
(`add_unit`, `edit_source`, `remove_unit`) that go through `apply`, so they
notify subscribers the same way a real editor would.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from .base import DocumentChanges, DocumentStore, UnitInsert, UnitRecord, apply_changes, new_unit_id


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, units: Optional[List[Dict[str, Any]]] = None, metadata: Optional[Dict[str, Any]] = None):
        super().__init__()
        self._units: List[UnitRecord] = []
        self._metadata: Dict[str, Any] = copy.deepcopy(metadata or {})
        self.apply_count = 0
        for i, raw in enumerate(units or []):
            self._units.append(
                UnitRecord(
                    unit_id=str(raw.get("unit_id") or new_unit_id()),
                    index=i,
                    source=str(raw.get("source") or ""),
                    metadata=copy.deepcopy(raw.get("metadata") or {}),
                )
            )

    def list_units(self) -> List[UnitRecord]:
        return [UnitRecord(u.unit_id, u.index, u.source, copy.deepcopy(u.metadata)) for u in self._units]

    def get_document_metadata(self) -> Dict[str, Any]:
        return copy.deepcopy(self._metadata)

    def _apply(self, changes: DocumentChanges) -> None:
        self._units, self._metadata = apply_changes(self._units, self._metadata, changes)
        self.apply_count += 1

    # Host-side edits

    def add_unit(self, source: str = "", metadata: Optional[Dict[str, Any]] = None, index: Optional[int] = None) -> str:
        uid = new_unit_id()
        self.apply(DocumentChanges(inserts=[UnitInsert(unit_id=uid, source=source, metadata=dict(metadata or {}), index=index)]))
        return uid

    def edit_source(self, unit_id: str, source: str) -> bool:
        return self.apply(DocumentChanges(unit_sources={unit_id: source}))

    def remove_unit(self, unit_id: str) -> bool:
        return self.apply(DocumentChanges(deletes=[unit_id]))

    def unit(self, unit_id: str) -> Optional[UnitRecord]:
        return next((u for u in self.list_units() if u.unit_id == unit_id), None)

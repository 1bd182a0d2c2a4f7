"""flownote.storage.notebook_file

File-backed document store for Jupyter notebooks (nbformat 4 JSON).

- Units are the notebook's code cells, in order; markdown/raw cells are kept
  untouched and keep their positions relative to the code cells.
- Unit ids are the cells' `id` fields (nbformat >= 4.5). Cells without one get
  a fresh id on the first write.
- Each `apply` rewrites the file through a temp file in the same directory.
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List

from ..logging import get_logger
from .base import DocumentChanges, DocumentStore, UnitRecord, _merge_metadata, new_unit_id

logger = get_logger(__name__)

NBFORMAT = 4
NBFORMAT_MINOR = 5


def _empty_notebook() -> Dict[str, Any]:
    return {"cells": [], "metadata": {}, "nbformat": NBFORMAT, "nbformat_minor": NBFORMAT_MINOR}


def _join_source(raw: Any) -> str:
    if isinstance(raw, list):
        return "".join(str(s) for s in raw)
    return str(raw or "")


def _split_source(text: str) -> List[str]:
    # nbformat stores multi-line sources as a list of lines keeping their "\n".
    return str(text).splitlines(keepends=True)


def _new_code_cell(unit_id: str, source: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "cell_type": "code",
        "execution_count": None,
        "id": unit_id,
        "metadata": copy.deepcopy(metadata),
        "outputs": [],
        "source": _split_source(source),
    }


class NotebookFormatError(ValueError):
    """Raised when a file is not a JSON notebook."""


class JsonNotebookStore(DocumentStore):
    def __init__(self, path: str | Path):
        super().__init__()
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return _empty_notebook()
        try:
            with self._path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise NotebookFormatError(f"Invalid notebook JSON in {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise NotebookFormatError(f"Notebook {self._path} must be a JSON object")
        if not isinstance(data.get("cells"), list):
            data["cells"] = []
        if not isinstance(data.get("metadata"), dict):
            data["metadata"] = {}
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path_str = tempfile.mkstemp(prefix=".flownote_", suffix=".ipynb", dir=str(self._path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=1)
                f.write("\n")
            os.replace(tmp_path_str, self._path)
        except Exception:
            try:
                os.unlink(tmp_path_str)
            except OSError:
                pass
            raise

    @staticmethod
    def _code_cells(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [c for c in data["cells"] if isinstance(c, dict) and c.get("cell_type") == "code"]

    @staticmethod
    def _ensure_ids(data: Dict[str, Any]) -> bool:
        changed = False
        seen: set[str] = set()
        for cell in data["cells"]:
            if not isinstance(cell, dict):
                continue
            cid = cell.get("id")
            if not isinstance(cid, str) or not cid or cid in seen:
                cell["id"] = new_unit_id()
                changed = True
            seen.add(cell["id"])
        return changed

    def list_units(self) -> List[UnitRecord]:
        data = self._load()
        out: List[UnitRecord] = []
        for i, cell in enumerate(self._code_cells(data)):
            cid = cell.get("id")
            meta = cell.get("metadata")
            out.append(
                UnitRecord(
                    # Unsaved cells without ids get positional ids until first write.
                    unit_id=cid if isinstance(cid, str) and cid else f"cell-{i}",
                    index=i,
                    source=_join_source(cell.get("source")),
                    metadata=copy.deepcopy(meta) if isinstance(meta, dict) else {},
                )
            )
        return out

    def get_document_metadata(self) -> Dict[str, Any]:
        return copy.deepcopy(self._load()["metadata"])

    def _apply(self, changes: DocumentChanges) -> None:
        data = self._load()
        # Positional ids handed out by list_units must keep resolving.
        positional = {f"cell-{i}": c for i, c in enumerate(self._code_cells(data)) if not c.get("id")}
        self._ensure_ids(data)
        by_id: Dict[str, Dict[str, Any]] = {c["id"]: c for c in self._code_cells(data)}
        for pid, cell in positional.items():
            by_id.setdefault(pid, cell)

        for uid, updates in changes.unit_metadata.items():
            cell = by_id.get(uid)
            if cell is None:
                continue
            if not isinstance(cell.get("metadata"), dict):
                cell["metadata"] = {}
            _merge_metadata(cell["metadata"], updates)
        for uid, source in changes.unit_sources.items():
            cell = by_id.get(uid)
            if cell is not None:
                cell["source"] = _split_source(source)

        deleted = {id(by_id[uid]) for uid in changes.deletes if uid in by_id}
        data["cells"] = [c for c in data["cells"] if id(c) not in deleted]

        for ins in changes.inserts:
            cell = _new_code_cell(ins.unit_id, ins.source, ins.metadata)
            code = self._code_cells(data)
            if ins.index is None or ins.index >= len(code):
                data["cells"].append(cell)
            else:
                anchor = code[max(0, ins.index)]
                pos = next(i for i, c in enumerate(data["cells"]) if c is anchor)
                data["cells"].insert(pos, cell)

        _merge_metadata(data["metadata"], changes.document_metadata)
        data["nbformat"] = NBFORMAT
        # Cell ids require nbformat 4.5.
        if not isinstance(data.get("nbformat_minor"), int) or data["nbformat_minor"] < NBFORMAT_MINOR:
            data["nbformat_minor"] = NBFORMAT_MINOR
        self._save(data)
        logger.debug(
            "Notebook written",
            path=str(self._path),
            units=len(changes.touched_units()),
            inserts=len(changes.inserts),
            deletes=len(changes.deletes),
        )

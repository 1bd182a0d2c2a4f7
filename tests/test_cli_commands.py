from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import pytest

from flownote.cli import main
from flownote.core import keys
from flownote.storage.base import DocumentChanges
from flownote.storage.notebook_file import JsonNotebookStore
from flownote.sync.synchronizer import UnitSynchronizer

LOAD: Dict[str, Any] = {
    "id": "load_csv",
    "name": "Load CSV",
    "outputs": [{"name": "df"}],
    "args": [{"name": "filepath", "default": ""}],
}
FILTER: Dict[str, Any] = {
    "id": "threshold_filter",
    "name": "Threshold Filter",
    "inputs": [{"name": "df"}],
    "outputs": [{"name": "out"}],
    "args": [{"name": "threshold", "default": 0.5}],
}


def _notebook(tmp_path: Path) -> Path:
    path = tmp_path / "flow.ipynb"
    sync = UnitSynchronizer(JsonNotebookStore(path))
    a = sync.add_node(LOAD)
    b = sync.add_node(FILTER)
    sync.set_value(a, "filepath", "iris.csv")
    sync.connect(a, "df", b, "df")
    return path


def test_export_writes_program(tmp_path: Path) -> None:
    path = _notebook(tmp_path)
    out = tmp_path / "workflow.py"
    before = path.read_text(encoding="utf-8")

    assert main(["export", str(path), "-o", str(out), "--server-root", "/srv"]) == 0
    program = out.read_text(encoding="utf-8")
    assert "class Workflow:" in program
    assert "n01_df = load_csv(filepath='/srv/dataset/iris.csv')" in program
    assert "n02_out = threshold_filter(df=df, threshold=0.5)" in program
    compile(program, str(out), "exec")
    # Export never writes to the notebook.
    assert path.read_text(encoding="utf-8") == before


def test_export_reports_cycles(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "cycle.ipynb"
    store = JsonNotebookStore(path)
    sync = UnitSynchronizer(store)
    b = sync.add_node(FILTER)
    c = sync.add_node(FILTER)
    store.apply(
        DocumentChanges(
            document_metadata={
                keys.EDGES: [
                    {"sourceId": b, "sourcePort": "out", "targetId": c, "targetPort": "df"},
                    {"sourceId": c, "sourcePort": "out", "targetId": b, "targetPort": "df"},
                ]
            }
        )
    )
    capsys.readouterr()

    assert main(["export", str(path)]) == 2
    captured = capsys.readouterr()
    assert "# Error: Cycle detected in workflow!" in captured.err
    assert captured.out == ""


def test_sync_and_graph_commands(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _notebook(tmp_path)
    capsys.readouterr()

    assert main(["sync", str(path), "--recompile"]) == 0
    assert capsys.readouterr().out.strip() == "2 node(s), 1 edge(s), 2 recompiled"

    assert main(["graph", str(path)]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert [n["function"] for n in payload["nodes"]] == ["load_csv", "threshold_filter"]
    assert payload["nodes"][1]["inputs"] == {"df": "n01_df"}
    assert payload["nodes"][1]["status"] == "configured"
    assert len(payload["edges"]) == 1


def test_unreadable_notebook_returns_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "broken.ipynb"
    path.write_text("{oops", encoding="utf-8")
    assert main(["graph", str(path)]) == 1
    assert "flownote:" in capsys.readouterr().err

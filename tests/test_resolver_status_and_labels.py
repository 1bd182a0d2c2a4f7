from __future__ import annotations

from flownote.core import keys
from flownote.core.config import FlowNoteConfig
from flownote.core.models import FlowEdge, NodeStatus, Position, schema_from_dict
from flownote.storage.in_memory import InMemoryDocumentStore
from flownote.sync import resolver

FILTER = schema_from_dict(
    {
        "id": "threshold_filter",
        "name": "Threshold Filter",
        "inputs": [{"name": "df"}, {"name": "mask", "required": False}],
        "outputs": [{"name": "out"}],
    }
)


def test_output_variable_names() -> None:
    assert resolver.output_variable_name(1, "out") == "n01_out"
    assert resolver.output_variable_name(12, "my port-2") == "n12_my_port_2"
    assert resolver.output_variable_name(123, "df") == "n123_df"


def test_status_from_connections() -> None:
    assert resolver.resolve_status(FILTER, None, "b", []) is NodeStatus.UNCONFIGURED
    edges = [FlowEdge("a", "out", "b", "df")]
    # Optional inputs do not need a connection.
    assert resolver.resolve_status(FILTER, None, "b", edges) is NodeStatus.CONFIGURED
    assert resolver.resolve_status(FILTER, None, "c", edges) is NodeStatus.UNCONFIGURED


def test_run_state_tags_override_connections() -> None:
    assert resolver.resolve_status(FILTER, "calculating", "b", []) is NodeStatus.RUNNING
    assert resolver.resolve_status(FILTER, "running", "b", []) is NodeStatus.RUNNING
    assert resolver.resolve_status(FILTER, "ready", "b", []) is NodeStatus.SUCCESS
    assert resolver.resolve_status(FILTER, "success", "b", []) is NodeStatus.SUCCESS
    assert resolver.resolve_status(FILTER, "error", "b", []) is NodeStatus.FAILED
    assert resolver.resolve_status(FILTER, "bogus", "b", []) is NodeStatus.UNCONFIGURED


def test_free_nodes_are_always_unconfigured() -> None:
    free = schema_from_dict({"id": "free_cell", "category": "free", "inputs": [{"name": "in"}]})
    assert resolver.resolve_status(None, "success", "n", []) is NodeStatus.UNCONFIGURED
    assert resolver.resolve_status(free, "success", "n", []) is NodeStatus.UNCONFIGURED


def test_labels() -> None:
    assert resolver.infer_label(FILTER, "whatever") == "Threshold Filter"
    assert resolver.infer_label(None, "") == "(Unnamed Step)"
    assert resolver.infer_label(None, "   \n") == "(Unnamed Step)"
    assert resolver.infer_label(None, "## Load data\nx = 1") == "Load data"
    assert resolver.infer_label(None, "abcdefghijklmnopqrstuvwxyz") == "abcdefghijklmnopqrst..."
    assert resolver.infer_label(None, "short = 1") == "short = 1"
    assert resolver.infer_label(None, "abcdef", max_length=3) == "abc..."


def test_lenient_metadata_readers() -> None:
    meta = {
        keys.SCHEMA: "not a dict",
        keys.VALUES: ["bad"],
        keys.POSITION: {"x": "1", "y": 2},
        keys.OUTPUT_COLUMNS: {"out": [{"name": "a", "type": "int64"}, {"type": "no name"}], "bad": "x"},
        keys.OUTPUT_VARS: {"out": "n01_out", "bad": 3},
    }
    assert resolver.read_schema(meta) is None
    assert resolver.read_values(meta) == {}
    assert resolver.read_position(meta) is None
    cols = resolver.read_output_columns(meta)
    assert list(cols) == ["out"]
    assert [c.name for c in cols["out"]] == ["a"]
    assert resolver.read_output_variables(meta) == {"out": "n01_out"}


def test_node_numbers_never_reuse_existing_numbers() -> None:
    store = InMemoryDocumentStore(
        units=[
            {"unit_id": "u1", "metadata": {keys.NODE_NUMBER: 7}},
            {"unit_id": "u2", "metadata": {}},
        ],
        metadata={keys.NUMBER_SEQ: 5},
    )
    with store.transaction() as tx:
        assert resolver.ensure_node_number(tx, "u1") == 7
        assert resolver.ensure_node_number(tx, "u2") == 8
        assert resolver.ensure_node_number(tx, "u2") == 8
    assert store.get_document_metadata()[keys.NUMBER_SEQ] == 9
    assert store.unit("u2").metadata[keys.NODE_NUMBER] == 8


def test_ensure_output_variables_keeps_existing_names() -> None:
    store = InMemoryDocumentStore(units=[{"unit_id": "u1", "metadata": {keys.OUTPUT_VARS: {"out": "custom"}}}])
    schema = schema_from_dict({"id": "f", "outputs": [{"name": "out"}, {"name": "extra"}]})
    with store.transaction() as tx:
        assert resolver.ensure_output_variables(tx, "u1", schema, 4) == {"out": "custom", "extra": "n04_extra"}


def test_default_positions_stack_below_lowest_node() -> None:
    cfg = FlowNoteConfig()
    assert resolver.default_position([], cfg) == Position(100.0, 50.0)
    assert resolver.default_position([Position(10.0, 400.0), Position(5.0, 80.0)], cfg) == Position(100.0, 550.0)

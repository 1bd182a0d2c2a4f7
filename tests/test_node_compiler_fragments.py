from __future__ import annotations

from flownote.codegen.node_compiler import build_node_call, compile_node, resolve_input_values
from flownote.core.config import FlowNoteConfig
from flownote.core.models import schema_from_dict

THRESHOLD = {
    "id": "threshold_filter",
    "name": "Threshold Filter",
    "inputs": [{"name": "df", "type": "DataFrame"}],
    "outputs": [{"name": "out", "type": "DataFrame"}],
    "args": [{"name": "threshold", "type": "float", "default": 0.5}],
}


def test_threshold_node_fragment() -> None:
    code = compile_node(THRESHOLD, {"threshold": 0.7}, {"out": "n01_out"})
    assert code == "\n".join(
        [
            "# Threshold Filter",
            "from workflow_lib import *",
            "n01_out = threshold_filter(df=None, threshold=0.7)",
            "try:",
            "    display(n01_out.head())",
            "except Exception:",
            "    print(n01_out)",
        ]
    )


def test_compile_is_idempotent() -> None:
    a = compile_node(THRESHOLD, {"threshold": 0.7}, {"out": "n01_out"})
    b = compile_node(THRESHOLD, {"threshold": 0.7}, {"out": "n01_out"})
    assert a == b


def test_missing_values_fall_back_to_defaults_and_connected_port_is_bare() -> None:
    code = compile_node(THRESHOLD, {"df": "n03_df"}, {"out": "n04_out"})
    assert "n04_out = threshold_filter(df=n03_df, threshold=0.5)" in code


def test_multi_output_binds_every_port_to_intermediate() -> None:
    schema = {
        "id": "split",
        "name": "Split",
        "outputs": [{"name": "train"}, {"name": "test"}],
        "args": [{"name": "ratio", "default": 0.8}],
    }
    code = compile_node(schema, {}, {"train": "n02_train", "test": "n02_test"})
    lines = code.split("\n")
    assert lines[2:5] == ["res = split(ratio=0.8)", "n02_train = res", "n02_test = res"]
    assert "    display(res.head())" in lines


def test_single_output_without_legal_variable_uses_intermediate() -> None:
    code = compile_node(THRESHOLD, {}, {"out": "not valid"})
    assert "res = threshold_filter(df=None, threshold=0.5)" in code
    assert "not valid" not in code


def test_no_outputs_is_a_bare_call() -> None:
    schema = {"id": "plot", "name": "Plot", "inputs": [{"name": "df"}]}
    assert compile_node(schema, {}).split("\n")[-1] == "plot(df=None)"


def test_missing_schema_compiles_to_placeholder() -> None:
    assert compile_node(None) == "# Step\nfrom workflow_lib import *\nnoop()"
    assert compile_node({"name": "Nameless"}).endswith("noop()")


def test_output_role_args_are_skipped_and_input_role_args_accept_identifiers() -> None:
    schema = {
        "id": "merge",
        "name": "Merge",
        "outputs": [{"name": "out"}],
        "args": [
            {"name": "left", "role": "input"},
            {"name": "target", "role": "output", "default": "x"},
            {"name": "how", "default": "inner"},
        ],
    }
    call = build_node_call(schema, {"left": "n01_out"}, {"out": "n05_out"}).call
    assert call == "merge(left=n01_out, how='inner')"


def test_schema_imports_follow_helper_import_once() -> None:
    schema = dict(THRESHOLD, imports=["import pandas as pd", "import pandas as pd", "from workflow_lib import *"])
    code = compile_node(schema, {}, {"out": "n01_out"})
    assert code.split("\n")[1:3] == ["from workflow_lib import *", "import pandas as pd"]

    no_imports = compile_node(schema, {}, {"out": "n01_out"}, include_imports=False)
    assert "import" not in no_imports


def test_custom_helper_import_and_server_root() -> None:
    cfg = FlowNoteConfig(helper_import="from mylib import *")
    schema = {"id": "load_csv", "name": "Load", "outputs": [{"name": "df"}], "args": [{"name": "filepath"}]}
    code = compile_node(schema, {"filepath": "a.csv"}, {"df": "n01_df"}, server_root="/data", config=cfg)
    assert "from mylib import *" in code
    assert "n01_df = load_csv(filepath='/data/dataset/a.csv')" in code


def test_resolve_input_values_drops_disconnected_inputs() -> None:
    schema = schema_from_dict(THRESHOLD)
    assert schema is not None
    stale = {"df": "n09_out", "threshold": 0.3}
    assert resolve_input_values(schema, stale, {}) == {"threshold": 0.3}
    assert resolve_input_values(schema, stale, {"df": "n01_out"}) == {"df": "n01_out", "threshold": 0.3}

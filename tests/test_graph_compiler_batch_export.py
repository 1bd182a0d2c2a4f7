from __future__ import annotations

from flownote.codegen.graph_compiler import CycleError, compile_graph, topological_order
from flownote.core.models import FlowEdge, FlowNode, schema_from_dict

LOAD = schema_from_dict(
    {
        "id": "load_csv",
        "name": "Load CSV",
        "outputs": [{"name": "df"}],
        "args": [{"name": "filepath", "default": ""}],
        "imports": ["import pandas as pd"],
    }
)
FILTER = schema_from_dict(
    {
        "id": "threshold_filter",
        "name": "Threshold Filter",
        "inputs": [{"name": "df"}],
        "outputs": [{"name": "out"}],
        "args": [{"name": "threshold", "default": 0.5}],
    }
)


def _load(node_id: str, number: int) -> FlowNode:
    return FlowNode(id=node_id, schema=LOAD, values={"filepath": "x.csv"}, output_variables={"df": f"n{number:02d}_df"})


def _filter(node_id: str, number: int) -> FlowNode:
    return FlowNode(id=node_id, schema=FILTER, values={"threshold": 0.7}, output_variables={"out": f"n{number:02d}_out"})


def test_topological_order_is_stable() -> None:
    a, b, c = _load("a", 1), _filter("b", 2), _filter("c", 3)
    edges = [FlowEdge("a", "df", "c", "df"), FlowEdge("a", "df", "b", "df")]
    order = topological_order([c, b, a], edges)
    assert order is not None
    assert [n.id for n in order] == ["a", "c", "b"]


def test_two_node_program() -> None:
    a, b = _load("a", 1), _filter("b", 2)
    program = compile_graph([b, a], [FlowEdge("a", "df", "b", "df")])
    assert isinstance(program, str)
    lines = program.split("\n")

    assert lines[0:2] == ["from workflow_lib import *", "import pandas as pd"]
    assert "class Workflow:" in lines
    assert "        self.results = {}" in lines
    assert "    def step_a(self):" in lines
    assert "    def step_b(self, df):" in lines
    assert "        n02_out = threshold_filter(df=df, threshold=0.7)" in lines
    assert "        n01_df = load_csv(filepath='dataset/x.csv')" in lines
    assert "        self.results['b'] = n02_out" in lines
    assert lines.index("    def step_a(self):") < lines.index("    def step_b(self, df):")

    run = lines[lines.index("    def run(self):") :]
    assert run[1:4] == [
        "        res_a = self.step_a()",
        "        res_b = self.step_b(res_a)",
        "        return res_b",
    ]
    assert program.endswith(
        "workflow = Workflow()\n"
        "workflow.run()\n"
        'print("Workflow finished.")\n'
        "print(\"Intermediate results available in 'workflow.results'.\")\n"
    )
    compile(program, "<workflow>", "exec")


def test_cycle_returns_artifact_without_code() -> None:
    b, c = _filter("b", 2), _filter("c", 3)
    result = compile_graph([b, c], [FlowEdge("b", "out", "c", "df"), FlowEdge("c", "out", "b", "df")])
    assert isinstance(result, CycleError)
    assert sorted(result.node_ids) == ["b", "c"]
    assert result.as_source() == "# Error: Cycle detected in workflow!"


def test_colliding_parameters_are_suffixed_and_first_edge_supplies_value() -> None:
    a, x, b = _load("a", 1), _load("x", 2), _filter("b", 3)
    edges = [FlowEdge("a", "df", "b", "df"), FlowEdge("x", "df", "b", "df")]
    program = compile_graph([a, x, b], edges)
    assert isinstance(program, str)
    assert "    def step_b(self, df, df_2):" in program
    assert "threshold_filter(df=df, threshold=0.7)" in program
    assert "        res_b = self.step_b(res_a, res_x)" in program
    compile(program, "<workflow>", "exec")


def test_free_nodes_embed_their_source() -> None:
    free = FlowNode(id="f-1", source="x = 1\n%matplotlib inline\n", label="Scratch")
    empty = FlowNode(id="f-2", source="")
    program = compile_graph([free, empty], [])
    assert isinstance(program, str)
    assert "    def step_f_1(self):\n        x = 1\n        # %matplotlib inline" in program
    assert "    def step_f_2(self):\n        pass" in program
    # Nothing returns a value, so run() returns None.
    assert "        self.step_f_1()\n        self.step_f_2()\n        return None" in program
    compile(program, "<workflow>", "exec")


def test_edges_to_unknown_nodes_are_ignored_and_output_is_deterministic() -> None:
    a, b = _load("a", 1), _filter("b", 2)
    edges = [FlowEdge("a", "df", "b", "df"), FlowEdge("ghost", "out", "b", "df")]
    first = compile_graph([a, b], edges)
    second = compile_graph([a, b], edges)
    assert first == second
    assert isinstance(first, str)
    assert "    def step_b(self, df):" in first


def test_schema_without_function_id_compiles_to_noop() -> None:
    half = schema_from_dict({"name": "Half configured", "inputs": [{"name": "df"}], "outputs": [{"name": "out"}]})
    b = FlowNode(id="b", schema=half, output_variables={"out": "n02_out"}, source="# stale text")
    program = compile_graph([_load("a", 1), b], [FlowEdge("a", "df", "b", "df")])
    assert isinstance(program, str)
    assert "    def step_b(self, df):" in program
    assert "        n02_out = noop(df=df)" in program
    assert "stale text" not in program
    assert "        res_b = self.step_b(res_a)" in program
    compile(program, "<workflow>", "exec")


def test_step_parameters_do_not_shadow_preview_helpers() -> None:
    show = schema_from_dict(
        {"id": "show", "name": "Show", "inputs": [{"name": "display"}, {"name": "print"}], "outputs": [{"name": "out"}]}
    )
    b = FlowNode(id="b", schema=show, output_variables={"out": "n02_out"})
    edges = [FlowEdge("a", "df", "b", "display"), FlowEdge("a", "df", "b", "print")]
    program = compile_graph([_load("a", 1), b], edges)
    assert isinstance(program, str)
    assert "    def step_b(self, display_1, print_2):" in program
    assert "        n02_out = show(display=display_1, print=print_2)" in program
    assert "            display(n02_out.head())" in program
    compile(program, "<workflow>", "exec")

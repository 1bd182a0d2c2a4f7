"""flownote.cli

Command-line access to notebook files:

    flownote export NOTEBOOK [-o OUT] [--server-root DIR]
    flownote sync NOTEBOOK [--recompile] [--server-root DIR]
    flownote graph NOTEBOOK
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .codegen.graph_compiler import CycleError
from .core.config import FlowNoteConfig
from .core.models import FlowNode, column_map_to_raw
from .logging import configure_logging, get_logger
from .storage.notebook_file import JsonNotebookStore, NotebookFormatError
from .sync.synchronizer import UnitSynchronizer

logger = get_logger(__name__)


def _node_summary(node: FlowNode) -> Dict[str, Any]:
    return {
        "id": node.id,
        "index": node.index,
        "number": node.sequence_number,
        "label": node.label,
        "function": node.schema.function_id if node.schema is not None else None,
        "status": node.status.value,
        "outputs": dict(node.output_variables),
        "inputs": dict(node.input_variables),
        "input_columns": column_map_to_raw(node.input_columns),
    }


def _synchronizer(path: str, server_root: Optional[str]) -> UnitSynchronizer:
    config = FlowNoteConfig.from_env()
    if server_root:
        config = config.with_server_root(server_root)
    return UnitSynchronizer(JsonNotebookStore(path), config=config)


def _cmd_export(args: argparse.Namespace) -> int:
    program = _synchronizer(args.notebook, args.server_root).export_program()
    if isinstance(program, CycleError):
        sys.stderr.write(program.as_source() + "\n")
        return 2
    if args.output:
        Path(args.output).write_text(program, encoding="utf-8")
        logger.info("Program written", path=str(args.output))
    else:
        sys.stdout.write(program)
    return 0


def _cmd_sync(args: argparse.Namespace) -> int:
    sync = _synchronizer(args.notebook, args.server_root)
    sync.refresh()
    recompiled = sync.recompile_all() if args.recompile else 0
    sys.stdout.write(f"{len(sync.graph)} node(s), {len(sync.graph.edges)} edge(s), {recompiled} recompiled\n")
    return 0


def _cmd_graph(args: argparse.Namespace) -> int:
    graph = _synchronizer(args.notebook, None).preview()
    payload = {
        "nodes": [_node_summary(n) for n in graph],
        "edges": [e.to_dict() for e in graph.edges],
    }
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2) + "\n")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="flownote", add_help=True)
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING).")
    sub = parser.add_subparsers(dest="command", required=True)

    p_export = sub.add_parser("export", help="Compile the notebook's graph into one standalone program.")
    p_export.add_argument("notebook", help="Path to the .ipynb file.")
    p_export.add_argument("-o", "--output", default="", help="Write the program here instead of stdout.")
    p_export.add_argument("--server-root", default="", help="Root directory for file-path parameters.")
    p_export.set_defaults(func=_cmd_export)

    p_sync = sub.add_parser("sync", help="Bind units, prune invalid edges and persist the result.")
    p_sync.add_argument("notebook", help="Path to the .ipynb file.")
    p_sync.add_argument("--recompile", action="store_true", help="Regenerate the code of every configured node.")
    p_sync.add_argument("--server-root", default="", help="Root directory for file-path parameters.")
    p_sync.set_defaults(func=_cmd_sync)

    p_graph = sub.add_parser("graph", help="Print the notebook's graph as JSON (read-only).")
    p_graph.add_argument("notebook", help="Path to the .ipynb file.")
    p_graph.set_defaults(func=_cmd_graph)

    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args.log_level)

    try:
        return int(args.func(args))
    except (NotebookFormatError, OSError) as e:
        sys.stderr.write(f"flownote: {e}\n")
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

"""flownote.sync.introspector

Asks the live runtime which columns each output variable holds.

The query is a small snippet executed in the runtime's namespace. It prints one
JSON line `{variable: [{"name": ..., "type": ...}, ...]}` covering the
variables that currently hold pandas DataFrames; everything else is omitted.

Failures never propagate: a timeout, a runtime error or unparsable output all
yield `{}` and a log line. Each node has a generation counter so that a reply
to a superseded query (the node ran again meanwhile) is discarded.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Mapping, Optional

from ..core.config import FlowNoteConfig
from ..core.models import ColumnMap, columns_from_raw
from ..logging import get_logger
from ..runtime.base import RuntimeClient

logger = get_logger(__name__)

_SNIPPET = """\
import json as _flownote_json
try:
    import pandas as _flownote_pd
except ImportError:
    print(_flownote_json.dumps({{}}))
else:
    _flownote_cols = {{}}
    _flownote_ns = globals()
    for _flownote_v in {names}:
        _flownote_val = _flownote_ns.get(_flownote_v)
        if isinstance(_flownote_val, _flownote_pd.DataFrame):
            try:
                _flownote_cols[_flownote_v] = [
                    {{"name": str(c), "type": str(_flownote_val[c].dtype)}} for c in _flownote_val.columns
                ]
            except Exception:
                pass
    print(_flownote_json.dumps(_flownote_cols))
    del _flownote_cols, _flownote_ns
"""


def queryable_variables(output_vars: Mapping[str, str]) -> List[str]:
    """Variable names worth asking about (private `_x` names are skipped)."""
    names: List[str] = []
    for var in output_vars.values():
        if isinstance(var, str) and var and not var.startswith("_") and var not in names:
            names.append(var)
    return names


def build_introspection_code(variables: List[str]) -> str:
    return _SNIPPET.format(names=json.dumps(list(variables)))


def parse_introspection_output(stdout: str) -> Dict[str, Any]:
    """Return the last JSON object printed on stdout (or {})."""
    for line in reversed(str(stdout or "").splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return {}


def map_columns_to_ports(output_vars: Mapping[str, str], by_variable: Mapping[str, Any]) -> ColumnMap:
    out: ColumnMap = {}
    for port, var in output_vars.items():
        cols = by_variable.get(var)
        if isinstance(cols, list):
            out[port] = columns_from_raw(cols)
    return out


class RuntimeIntrospector:
    def __init__(self, runtime: RuntimeClient, config: Optional[FlowNoteConfig] = None):
        self._runtime = runtime
        self._config = config or FlowNoteConfig()
        self._generations: Dict[str, int] = {}

    @property
    def timeout(self) -> float:
        return self._config.introspection_timeout

    def _next_generation(self, node_id: str) -> int:
        gen = self._generations.get(node_id, 0) + 1
        self._generations[node_id] = gen
        return gen

    def is_current(self, node_id: str, generation: int) -> bool:
        return self._generations.get(node_id) == generation

    async def introspect(self, node_id: str, output_vars: Mapping[str, str]) -> Optional[ColumnMap]:
        """Columns per output port, `{}` on failure, None when superseded."""
        generation = self._next_generation(node_id)
        names = queryable_variables(output_vars)
        if not names:
            return {}

        try:
            reply = await asyncio.wait_for(self._runtime.execute(build_introspection_code(names)), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Column introspection timed out", node_id=node_id, timeout=self.timeout)
            return {} if self.is_current(node_id, generation) else None
        except Exception as e:
            logger.error("Column introspection failed", node_id=node_id, error=str(e))
            return {} if self.is_current(node_id, generation) else None

        if not self.is_current(node_id, generation):
            logger.debug("Discarding superseded introspection reply", node_id=node_id)
            return None
        if not reply.ok:
            logger.warning("Column introspection returned an error", node_id=node_id, error=reply.error or reply.status)
            return {}

        by_variable = parse_introspection_output(reply.stdout)
        if not by_variable and reply.stdout.strip():
            logger.warning("Unparsable introspection output", node_id=node_id)
        return map_columns_to_ports(output_vars, by_variable)

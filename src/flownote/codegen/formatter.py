"""Python literal formatting for parameter values.

`format_value` turns a JSON-like parameter value into Python source. It never
raises: values it cannot represent degrade to a quoted string of their `str()`
form so that compilation stays total.
"""

from __future__ import annotations

import keyword
import math
import re
from typing import Any, Optional

from ..core.config import FlowNoteConfig

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_WIN_ABS_RE = re.compile(r"^[A-Za-z]:[\\/]")
_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}

_DEFAULT_CONFIG = FlowNoteConfig()


def is_bare_identifier(value: Any) -> bool:
    """True when `value` can be emitted unquoted as a variable reference."""
    if not isinstance(value, str) or not _IDENTIFIER_RE.match(value):
        return False
    return not keyword.iskeyword(value) or value in ("None", "True", "False")


def quote(text: str) -> str:
    """Single-quoted Python string literal."""
    out = []
    for ch in text:
        esc = _ESCAPES.get(ch)
        if esc is not None:
            out.append(esc)
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\x{ord(ch):02x}")
        else:
            out.append(ch)
    return "'" + "".join(out) + "'"


def _is_windows_root(root: str) -> bool:
    return "\\" in root or ":" in root


def _is_absolute(unified: str) -> bool:
    # `unified` uses forward slashes only; UNC paths show up as "//host".
    return unified.startswith("/") or bool(_WIN_ABS_RE.match(unified))


def normalize_file_path(path: str, server_root: Optional[str] = None, *, dataset_dir: str = "dataset") -> str:
    """Normalize a file-path parameter (unquoted result).

    Relative paths are placed under `dataset_dir` and, when `server_root` is
    given, joined onto it. The separator style follows the root; without a
    root, forward slashes are used.
    """
    s = str(path or "").strip()
    if not s:
        return ""
    root = str(server_root or "").strip()
    sep = "\\" if root and _is_windows_root(root) else "/"

    unified = s.replace("\\", "/")
    if _is_absolute(unified):
        return unified.replace("/", sep)

    prefix = dataset_dir.strip().strip("/\\")
    parts = [p for p in unified.split("/") if p and p != "."]
    if prefix and (not parts or parts[0] != prefix):
        parts.insert(0, prefix)
    if not root:
        return "/".join(parts)
    root_norm = root.rstrip("/\\")
    return sep.join([root_norm, *parts])


def format_file_path(path: Any, server_root: Optional[str] = None, *, dataset_dir: str = "dataset") -> str:
    if path is None:
        return "''"
    return quote(normalize_file_path(str(path), server_root, dataset_dir=dataset_dir))


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "float('nan')"
    if math.isinf(value):
        return "float('inf')" if value > 0 else "-float('inf')"
    return repr(value)


def _format_plain(value: Any) -> str:
    """Format without file-path/identifier handling (nested values)."""
    if value is None:
        return "None"
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, str):
        return quote(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_format_plain(v) for v in value) + "]"
    if isinstance(value, dict):
        items = ", ".join(f"{_format_plain(k)}: {_format_plain(v)}" for k, v in value.items())
        return "{" + items + "}"
    try:
        text = str(value)
    except Exception:
        text = object.__repr__(value)
    return quote(text)


def format_value(
    value: Any,
    arg_type: Optional[str] = None,
    arg_name: Optional[str] = None,
    server_root: Optional[str] = None,
    *,
    config: Optional[FlowNoteConfig] = None,
) -> str:
    """Format a parameter value as a Python literal.

    `arg_type` is accepted for callers that carry it but does not change the
    output: the runtime type of `value` decides the literal form.
    """
    cfg = config or _DEFAULT_CONFIG
    if value is None or isinstance(value, (bool, int, float, list, tuple, dict)):
        return _format_plain(value)
    if cfg.is_path_field(arg_name):
        root = server_root if server_root is not None else cfg.server_root
        return format_file_path(value, root, dataset_dir=cfg.dataset_dir)
    return _format_plain(value)


def format_argument(
    name: str,
    value: Any,
    arg_type: Optional[str] = None,
    role: Optional[str] = None,
    server_root: Optional[str] = None,
    *,
    config: Optional[FlowNoteConfig] = None,
) -> str:
    """Render `name=<literal>`; only role=input identifiers stay unquoted."""
    if role == "input" and is_bare_identifier(value):
        return f"{name}={value}"
    return f"{name}={format_value(value, arg_type, name, server_root, config=config)}"

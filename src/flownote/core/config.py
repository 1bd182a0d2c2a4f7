"""flownote.core.config

Compiler and synchronizer configuration.

`FlowNoteConfig` centralizes the knobs that shape generated code (helper import,
file-path handling, names) and the synchronization pass (introspection timeout,
label length, default layout). Every component accepts an optional config and
falls back to `FlowNoteConfig()`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

DEFAULT_HELPER_IMPORT = "from workflow_lib import *"
DEFAULT_INTROSPECTION_TIMEOUT = 5.0


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class FlowNoteConfig:
    """Configuration shared by the compilers and the synchronizer.

    Attributes:
        server_root: Root directory used to make file-path parameters absolute
            (None = keep them relative).
        dataset_dir: Directory relative file paths are placed under ("" = none).
        path_fields: Parameter names treated as file paths.
        empty_default_fields: Parameters that start empty when an algorithm is
            selected, regardless of the catalog default.
        helper_import: Import line every generated fragment starts with.
        introspection_timeout: Seconds to wait for a column introspection reply.
        label_max_length: Maximum label length before truncation.
        layout_x / layout_y / layout_spacing: Default placement of new nodes.
        workflow_class_name: Class emitted by the batch compiler.
        intermediate_name: Variable holding a call result before output binding.
    """

    server_root: Optional[str] = None
    dataset_dir: str = "dataset"
    path_fields: Tuple[str, ...] = ("filepath",)
    empty_default_fields: Tuple[str, ...] = ("filepath", "timeIndex", "time_index")
    helper_import: str = DEFAULT_HELPER_IMPORT
    introspection_timeout: float = DEFAULT_INTROSPECTION_TIMEOUT
    label_max_length: int = 20
    layout_x: float = 100.0
    layout_y: float = 50.0
    layout_spacing: float = 150.0
    workflow_class_name: str = "Workflow"
    intermediate_name: str = "res"

    @classmethod
    def from_env(cls) -> "FlowNoteConfig":
        """Build a config from `FLOWNOTE_*` environment overrides.

        Invalid values fall back to the defaults instead of raising.
        """
        base = cls()
        return cls(
            server_root=_env_str("FLOWNOTE_SERVER_ROOT", base.server_root),
            dataset_dir=os.getenv("FLOWNOTE_DATASET_DIR", base.dataset_dir).strip(),
            helper_import=_env_str("FLOWNOTE_HELPER_IMPORT", base.helper_import) or base.helper_import,
            introspection_timeout=_env_float("FLOWNOTE_INTROSPECTION_TIMEOUT", base.introspection_timeout),
            label_max_length=_env_int("FLOWNOTE_LABEL_MAX_LENGTH", base.label_max_length),
        )

    def with_server_root(self, server_root: Optional[str]) -> "FlowNoteConfig":
        root = str(server_root).strip() if isinstance(server_root, str) else ""
        return replace(self, server_root=root or None)

    def is_path_field(self, name: Optional[str]) -> bool:
        return isinstance(name, str) and name in self.path_fields

    def to_dict(self) -> Dict[str, Any]:
        return {
            "server_root": self.server_root,
            "dataset_dir": self.dataset_dir,
            "path_fields": list(self.path_fields),
            "empty_default_fields": list(self.empty_default_fields),
            "helper_import": self.helper_import,
            "introspection_timeout": self.introspection_timeout,
            "label_max_length": self.label_max_length,
            "layout_x": self.layout_x,
            "layout_y": self.layout_y,
            "layout_spacing": self.layout_spacing,
            "workflow_class_name": self.workflow_class_name,
            "intermediate_name": self.intermediate_name,
        }

"""flownote.runtime.base

Interface to the live execution runtime (e.g. a Jupyter kernel).

FlowNote only needs one capability: run a snippet and read back what it printed.
Hosts adapt their kernel client to `RuntimeClient`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ExecutionReply:
    stdout: str = ""
    status: str = "ok"
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok" and self.error is None


class RuntimeClient(ABC):
    @abstractmethod
    async def execute(self, code: str) -> ExecutionReply:
        """Execute `code` silently and return its captured stdout."""

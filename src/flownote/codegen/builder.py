"""Line-oriented Python source builder."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Iterator, List

INDENT = "    "


class CodeBuilder:
    def __init__(self, indent: int = 0):
        self._lines: List[str] = []
        self._indent = indent

    def line(self, text: str = "") -> "CodeBuilder":
        self._lines.append(f"{INDENT * self._indent}{text}" if text else "")
        return self

    def lines(self, texts: Iterable[str]) -> "CodeBuilder":
        for text in texts:
            self.line(text)
        return self

    def comment(self, text: str) -> "CodeBuilder":
        # Comments must stay on one line or the remainder would become code.
        flat = " ".join(str(text).splitlines()).strip()
        return self.line(f"# {flat}" if flat else "#")

    def call(self, func: str, args: Iterable[str]) -> "CodeBuilder":
        return self.line(f"{func}({', '.join(args)})")

    def assign(self, target: str, expression: str) -> "CodeBuilder":
        return self.line(f"{target} = {expression}")

    def try_except(self, body: Iterable[str], handler: Iterable[str], exception: str = "Exception") -> "CodeBuilder":
        self.line("try:")
        with self.indented():
            self.lines(body)
        self.line(f"except {exception}:")
        with self.indented():
            self.lines(handler)
        return self

    @contextmanager
    def indented(self) -> Iterator["CodeBuilder"]:
        self._indent += 1
        try:
            yield self
        finally:
            self._indent -= 1

    def build(self) -> str:
        return "\n".join(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

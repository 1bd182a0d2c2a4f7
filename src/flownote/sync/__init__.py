"""flownote.sync

Keeps the document, its graph metadata and the generated code in step.
"""

from .graph import FlowGraph
from .introspector import RuntimeIntrospector
from .queue import PassQueue
from .synchronizer import UnitSynchronizer

__all__ = ["FlowGraph", "RuntimeIntrospector", "PassQueue", "UnitSynchronizer"]

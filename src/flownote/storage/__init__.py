"""flownote.storage

Document stores: where FlowNote reads units and persists graph metadata.
"""

from .base import DocumentChanges, DocumentStore, DocumentTransaction, UnitInsert, UnitRecord, apply_changes
from .in_memory import InMemoryDocumentStore
from .notebook_file import JsonNotebookStore, NotebookFormatError

__all__ = [
    "DocumentChanges",
    "DocumentStore",
    "DocumentTransaction",
    "UnitInsert",
    "UnitRecord",
    "apply_changes",
    "InMemoryDocumentStore",
    "JsonNotebookStore",
    "NotebookFormatError",
]

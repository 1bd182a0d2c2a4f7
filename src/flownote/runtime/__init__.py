from .base import ExecutionReply, RuntimeClient

__all__ = ["ExecutionReply", "RuntimeClient"]

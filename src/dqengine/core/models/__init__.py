"""Core models shared across modules."""

from dqengine.core.models.base import ExecutionContext, RunStatus, quote_identifier

__all__ = [
    "ExecutionContext",
    "RunStatus",
    "quote_identifier",
]

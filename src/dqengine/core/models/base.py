"""Base models and types used across all modules.

This module contains the fundamental types that don't belong to any specific
domain module (metrics, profiling, incremental, anomaly).
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class RunStatus(str, Enum):
    """Overall status of a run over many independent units of work."""

    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    CANCELLED = "cancelled"


class ExecutionContext(BaseModel):
    """Immutable description of the data a computation reads.

    Passed explicitly through every call that touches the data source.
    ``predicate`` is an optional SQL boolean expression selecting a slice
    (for example one partition) of ``table_name``.
    """

    model_config = ConfigDict(frozen=True)

    table_name: str
    predicate: str | None = None
    dataset: str | None = None

    def __str__(self) -> str:
        if self.predicate:
            return f"{self.table_name} [{self.predicate}]"
        return self.table_name

    @property
    def from_clause(self) -> str:
        """SQL FROM clause (including the partition predicate, if any)."""
        clause = f"FROM {quote_identifier(self.table_name)}"
        if self.predicate:
            clause += f" WHERE ({self.predicate})"
        return clause

    def where(self, condition: str) -> str:
        """FROM clause with an extra condition AND-ed to the predicate."""
        clause = f"FROM {quote_identifier(self.table_name)} WHERE "
        if self.predicate:
            return clause + f"({self.predicate}) AND ({condition})"
        return clause + f"({condition})"

    def with_predicate(self, predicate: str | None) -> ExecutionContext:
        """Copy of this context selecting a different slice."""
        return self.model_copy(update={"predicate": predicate})


def quote_identifier(name: str) -> str:
    """Quote a SQL identifier, escaping embedded double quotes."""
    return '"' + name.replace('"', '""') + '"'

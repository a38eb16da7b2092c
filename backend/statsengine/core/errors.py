from __future__ import annotations

import uuid


class StatsEngineError(Exception):
    """Base class for statistics engine failures."""


class DataSourceUnavailable(StatsEngineError):
    """The progress log / membership store cannot be reached; the run aborts."""


class EntityComputationError(StatsEngineError):
    """Aggregation of a single student, assignment or class failed."""

    def __init__(self, entity_type: str, entity_id: uuid.UUID, message: str):
        super().__init__(f"{entity_type} {entity_id}: {message}")
        self.entity_type = entity_type
        self.entity_id = entity_id


class UpsertConflict(StatsEngineError):
    """A keyed upsert kept colliding after all retries were spent."""


class InvariantViolation(StatsEngineError):
    """A computed aggregate broke one of its bounds. Indicates a bug."""

import logging
import uuid
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from statsengine.core.errors import DataSourceUnavailable, InvariantViolation

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    entity_type: str
    processed: int = 0
    failed: list[uuid.UUID] = field(default_factory=list)
    outcomes: Counter = field(default_factory=Counter)

    @property
    def succeeded(self) -> int:
        return self.processed - len(self.failed)

    def as_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": [str(entity_id) for entity_id in self.failed],
            "outcomes": dict(self.outcomes),
        }


def list_entity_ids(query: Query, entity_type: str) -> list[uuid.UUID]:
    """Load the population to process. Failing here means the store is down."""
    try:
        return [row[0] for row in query.all()]
    except SQLAlchemyError as exc:
        raise DataSourceUnavailable(f"Could not list {entity_type} ids: {exc}") from exc


def run_batch(
    db: Session,
    entity_type: str,
    entity_ids: Iterable[uuid.UUID],
    refresh: Callable[[uuid.UUID], object],
) -> BatchResult:
    """
    Apply ``refresh`` to every entity. One entity failing is logged and
    skipped; the batch carries on with the others.
    """
    result = BatchResult(entity_type=entity_type)
    for entity_id in entity_ids:
        result.processed += 1
        try:
            outcome = refresh(entity_id)
        except InvariantViolation:
            db.rollback()
            logger.critical(
                "Invariant violated for %s %s, aggregate not written",
                entity_type,
                entity_id,
                exc_info=True,
            )
            result.failed.append(entity_id)
            continue
        except Exception:  # noqa: BLE001
            db.rollback()
            logger.exception("Failed to refresh %s %s", entity_type, entity_id)
            result.failed.append(entity_id)
            continue
        if isinstance(outcome, str):
            result.outcomes[outcome] += 1

    logger.info(
        "Refreshed %s %s records (%s failed)",
        result.succeeded,
        entity_type,
        len(result.failed),
    )
    return result


def ensure(condition: bool, message: str) -> None:
    if not condition:
        raise InvariantViolation(message)


def ensure_rate(name: str, value: float) -> None:
    ensure(0.0 <= value <= 100.0, f"{name}={value} outside [0, 100]")

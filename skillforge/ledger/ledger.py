"""
Progression Ledger: append-only, per-user event log.

Core rules:
  - append is the only write path to durable progression state
  - (user_id, idempotency_key) is unique: a replayed trigger is a no-op
  - sequence numbers are assigned here, gapless and increasing per user
  - replay returns events in sequence order; every aggregate is a fold of it
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from skillforge.core.errors import DuplicateEventError, ValidationError
from skillforge.ledger.models import SOURCES, ProgressionEvent

logger = logging.getLogger(__name__)

# Retries when two writers race for the same (user_id, sequence) slot
_MAX_SEQUENCE_RETRIES = 5


@dataclass
class NewEvent:
    """
    An event as submitted, before the ledger assigns a sequence.

    When the payload depends on what is already in the ledger, pass
    *payload_factory* instead of *payload*: it is called inside append after
    the sequence slot is read, and again after every lost race.
    """
    idempotency_key: str
    user_id: int
    source: str
    payload: Optional[dict] = None
    occurred_at: Optional[datetime] = None
    payload_factory: Optional[Callable[[Session], dict]] = None


@dataclass
class AppendResult:
    accepted: bool
    sequence: int
    event: ProgressionEvent


def _check(event: NewEvent) -> None:
    if not event.user_id:
        raise ValidationError("event is missing user_id")
    if not event.idempotency_key or not str(event.idempotency_key).strip():
        raise ValidationError("event is missing an idempotency key")
    if len(event.idempotency_key) > 255:
        raise ValidationError("idempotency key longer than 255 characters")
    if event.source not in SOURCES:
        raise ValidationError(f"unknown event source '{event.source}'")
    if event.payload_factory is None and not isinstance(event.payload, dict):
        raise ValidationError("event payload must be an object")


def _build_payload(db: Session, event: NewEvent) -> dict:
    if event.payload_factory is None:
        return event.payload
    payload = event.payload_factory(db)
    if not isinstance(payload, dict):
        raise ValidationError("event payload must be an object")
    return payload


def find_by_key(db: Session, user_id: int, idempotency_key: str) -> Optional[ProgressionEvent]:
    return (
        db.query(ProgressionEvent)
        .filter(
            ProgressionEvent.user_id == user_id,
            ProgressionEvent.idempotency_key == idempotency_key,
        )
        .first()
    )


def last_sequence(db: Session, user_id: int) -> int:
    return (
        db.query(func.max(ProgressionEvent.sequence))
        .filter(ProgressionEvent.user_id == user_id)
        .scalar()
    ) or 0


def append(db: Session, event: NewEvent) -> AppendResult:
    """
    Append *event* for its user.

    Returns accepted=False with the prior entry when the idempotency key is
    already present. The row is flushed, not committed: the caller owns the
    transaction and must not have written anything else in it yet, since a
    lost sequence race rolls the transaction back before retrying.
    """
    _check(event)
    occurred_at = event.occurred_at or datetime.now(timezone.utc)

    for attempt in range(1, _MAX_SEQUENCE_RETRIES + 1):
        prior = find_by_key(db, event.user_id, event.idempotency_key)
        if prior is not None:
            logger.info(
                "[LEDGER] duplicate user=%s key=%s seq=%s",
                event.user_id, event.idempotency_key, prior.sequence,
            )
            return AppendResult(accepted=False, sequence=prior.sequence, event=prior)

        sequence = last_sequence(db, event.user_id) + 1
        # Built after the slot is read: a writer that lands in between takes
        # this sequence, the flush fails and the payload is built again.
        payload = _build_payload(db, event)
        row = ProgressionEvent(
            user_id=event.user_id,
            sequence=sequence,
            idempotency_key=event.idempotency_key,
            source=event.source,
            payload=payload,
            occurred_at=occurred_at,
        )
        db.add(row)
        try:
            db.flush()
        except IntegrityError:
            # Either another writer took our sequence number or committed the
            # same key first. Start over and let the key lookup decide.
            db.rollback()
            logger.warning(
                "[LEDGER] append conflict user=%s key=%s attempt=%s",
                event.user_id, event.idempotency_key, attempt,
            )
            continue

        logger.info(
            "[LEDGER] append user=%s seq=%s source=%s key=%s",
            event.user_id, row.sequence, row.source, row.idempotency_key,
        )
        return AppendResult(accepted=True, sequence=row.sequence, event=row)

    prior = find_by_key(db, event.user_id, event.idempotency_key)
    if prior is not None:
        raise DuplicateEventError(event.user_id, event.idempotency_key, prior.sequence)
    raise ValidationError(
        f"could not assign a ledger sequence for user {event.user_id} "
        f"after {_MAX_SEQUENCE_RETRIES} attempts"
    )


def replay(db: Session, user_id: int, after_sequence: int = 0) -> list[ProgressionEvent]:
    """Full (or tail) history for *user_id* in sequence order."""
    return (
        db.query(ProgressionEvent)
        .filter(
            ProgressionEvent.user_id == user_id,
            ProgressionEvent.sequence > after_sequence,
        )
        .order_by(ProgressionEvent.sequence.asc())
        .all()
    )


def events_by_source(db: Session, user_id: int, source: str) -> list[ProgressionEvent]:
    return (
        db.query(ProgressionEvent)
        .filter(ProgressionEvent.user_id == user_id, ProgressionEvent.source == source)
        .order_by(ProgressionEvent.sequence.asc())
        .all()
    )

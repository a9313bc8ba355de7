from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from skillforge.db.base import Base


SOURCES = (
    "github_analysis",
    "quest_completion",
    "manual_exercise",
    "badge_trigger",
    "job_change",
)


class ProgressionEvent(Base):
    """
    Append-only ledger entry. Sole source of truth for player progression.

    Rows are never updated or deleted; corrections are new events.
    """
    __tablename__ = "progression_events"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # Per-user, gapless, assigned at append time
    sequence = Column(Integer, nullable=False)
    idempotency_key = Column(String(255), nullable=False)

    source = Column(String(32), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    occurred_at = Column(DateTime(timezone=True), nullable=False)
    recorded_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="uq_event_user_sequence"),
        UniqueConstraint("user_id", "idempotency_key", name="uq_event_user_key"),
    )

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "idempotency_key": self.idempotency_key,
            "source": self.source,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
        }

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from skillforge.db.base import Base


class Badge(Base):
    """Badge template: a one-time recognition unlocked by a history predicate."""
    __tablename__ = "badges"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(64), unique=True, index=True, nullable=False)
    label = Column(String(255), nullable=False)
    icon = Column(String(16), nullable=False, default="")
    description = Column(Text, nullable=False, default="")

    # Declarative rule, see rules.predicates
    predicate = Column(JSON, nullable=False)
    xp_bonus = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class BadgeAward(Base):
    __tablename__ = "badge_awards"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    badge_id = Column(Integer, ForeignKey("badges.id"), nullable=False)
    # Ledger sequence of the badge_trigger event that records this award
    sequence = Column(Integer, nullable=False)
    earned_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),
    )

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from skillforge.db.base import Base


QUEST_CATEGORIES = ("daily", "main", "side")

# Forward-only lifecycle
QUEST_STATES = ("offered", "in_progress", "completed", "claimed")


class Quest(Base):
    """
    Quest template.

    Categories differ only in offering policy (daily reset, story gating);
    every instance runs the same state machine.
    """
    __tablename__ = "quests"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(128), unique=True, index=True, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(16), nullable=False, default="side")

    xp_reward = Column(Integer, nullable=False, default=0)
    # {"python": 120, "debugging": 40}
    skill_rewards = Column(JSON, nullable=False, default=dict)
    tags = Column(JSON, nullable=False, default=list)

    min_level = Column(Integer, nullable=False, default=1)
    # Main-story gating: key of the quest that must be claimed first
    requires_quest = Column(String(128), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class QuestInstance(Base):
    __tablename__ = "quest_instances"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    quest_id = Column(Integer, ForeignKey("quests.id"), nullable=False)

    # ISO date for daily quests, "once" for main/side
    period = Column(String(16), nullable=False)
    state = Column(String(16), nullable=False, default="offered")

    offered_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    # Idempotency key supplied by the first successful claim
    claim_key = Column(String(255), nullable=True)
    claim_sequence = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "quest_id", "period", name="uq_quest_instance_period"),
    )

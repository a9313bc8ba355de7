from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from skillforge.db.base import Base


class User(Base):
    """
    Player aggregate.

    Every progression column below is a cache of the ledger fold and is only
    written from Leveling Calculator output (see projection.builder).
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)

    job_class = Column(String(64), nullable=False, default="apprentice")
    level = Column(Integer, nullable=False, default=1)
    total_xp = Column(Integer, nullable=False, default=0)

    # Cosmetic stamina stats
    hp = Column(Integer, nullable=False, default=0)
    mp = Column(Integer, nullable=False, default=0)

    stat_coding = Column(Integer, nullable=False, default=0)
    stat_debugging = Column(Integer, nullable=False, default=0)
    stat_design = Column(Integer, nullable=False, default=0)
    stat_communication = Column(Integer, nullable=False, default=0)
    unspent_stat_points = Column(Integer, nullable=False, default=0)

    # Ledger sequence the columns above reflect
    applied_sequence = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SkillProgress(Base):
    """(user, skill) -> skill level + skill XP. Rebuildable from the ledger."""
    __tablename__ = "skill_progress"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    skill = Column(String(128), nullable=False)

    level = Column(Integer, nullable=False, default=1)
    xp = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "skill", name="uq_user_skill"),
    )

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from skillforge.db.base import Base


class PlayerStatusCache(Base):
    """
    Incrementally maintained fold of one user's ledger.

    Valid only for the config fingerprint it was built with; invalidated by
    any ledger sequence past last_sequence.
    """
    __tablename__ = "player_status_cache"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    last_sequence = Column(Integer, nullable=False, default=0)
    config_fingerprint = Column(String(32), nullable=False)
    # Canonical JSON of leveling.state.ProgressionState
    state_json = Column(Text, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

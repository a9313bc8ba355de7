from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from skillforge.db.base import Base


JOB_STATUSES = ("pending", "running", "succeeded", "failed", "cancelled")


class AnalysisJob(Base):
    """Background profile analysis: fetch snapshot, score, append."""
    __tablename__ = "analysis_jobs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(String(16), nullable=False, default="pending")
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    # Filled on success
    content_hash = Column(String(128), nullable=True)
    sequence = Column(Integer, nullable=True)
    accepted = Column(Boolean, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "content_hash": self.content_hash,
            "sequence": self.sequence,
            "accepted": self.accepted,
        }

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from skillforge.db.base import Base


# pending -> adopted | rejected, never back
PROPOSAL_STATES = ("pending", "adopted", "rejected")


class RoadmapProposal(Base):
    __tablename__ = "roadmap_proposals"

    id = Column(Integer, primary_key=True, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    # Which skill roadmap this would extend, e.g. "python" or "devops"
    roadmap = Column(String(128), nullable=False, default="")

    # Tally over eligible votes only
    yes_count = Column(Integer, nullable=False, default=0)
    no_count = Column(Integer, nullable=False, default=0)
    net = Column(Integer, nullable=False, default=0)

    state = Column(String(16), nullable=False, default="pending")
    decided_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "author_id": self.author_id,
            "title": self.title,
            "description": self.description,
            "roadmap": self.roadmap,
            "yes": self.yes_count,
            "no": self.no_count,
            "net": self.net,
            "state": self.state,
            "decided_at": str(self.decided_at) if self.decided_at else None,
        }


class Vote(Base):
    __tablename__ = "votes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    proposal_id = Column(Integer, ForeignKey("roadmap_proposals.id"), nullable=False, index=True)

    # "up" or "down"
    direction = Column(String(8), nullable=False)
    # Whether the voter cleared the reputation floor when the vote was cast
    eligible = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "proposal_id", name="uq_vote_user_proposal"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "proposal_id": self.proposal_id,
            "direction": self.direction,
            "eligible": self.eligible,
        }

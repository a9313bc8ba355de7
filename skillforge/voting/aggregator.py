"""
Roadmap Voting Aggregator.

Core rules:
  - one effective vote per (user, proposal); a repeat returns the first vote
  - votes below the configured reputation floor are kept but not tallied
  - the tally is recomputed from stored votes after every accepted vote
  - net >= adopt_threshold -> adopted, net <= -reject_threshold -> rejected
  - a tie stays pending (logged), never adopted implicitly
  - decided proposals take no more votes
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from skillforge.core.config import ProgressionConfig, get_config
from skillforge.core.errors import NotFoundError, ProposalClosedError, ValidationError
from skillforge.players.models import User
from skillforge.voting.models import RoadmapProposal, Vote

logger = logging.getLogger(__name__)

_DIRECTIONS = {"up": "up", "yes": "up", "down": "down", "no": "down"}


@dataclass
class VoteResult:
    vote: Vote
    accepted: bool
    proposal: RoadmapProposal

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "vote": self.vote.to_dict(),
            "proposal": self.proposal.to_dict(),
        }


def _require_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f"user {user_id} not found")
    return user


def get_proposal(db: Session, proposal_id: int) -> RoadmapProposal:
    proposal = db.query(RoadmapProposal).filter(RoadmapProposal.id == proposal_id).first()
    if not proposal:
        raise NotFoundError(f"proposal {proposal_id} not found")
    return proposal


def create_proposal(db: Session, author_id: int, title: str, description: str = "", roadmap: str = "") -> RoadmapProposal:
    _require_user(db, author_id)
    if not title or not title.strip():
        raise ValidationError("proposal title is required")
    proposal = RoadmapProposal(
        author_id=author_id,
        title=title.strip(),
        description=description or "",
        roadmap=(roadmap or "").strip().lower(),
        state="pending",
    )
    db.add(proposal)
    db.commit()
    db.refresh(proposal)
    logger.info("[PROPOSAL] created id=%s by user=%s roadmap='%s'", proposal.id, author_id, proposal.roadmap)
    return proposal


def normalize_direction(direction: str) -> str:
    value = _DIRECTIONS.get(str(direction or "").strip().lower())
    if value is None:
        raise ValidationError(f"vote direction must be one of {sorted(_DIRECTIONS)}")
    return value


def recompute_tally(db: Session, proposal: RoadmapProposal, config: ProgressionConfig) -> RoadmapProposal:
    """Recount eligible votes and apply the decision rule. Caller commits."""
    votes = (
        db.query(Vote)
        .filter(Vote.proposal_id == proposal.id, Vote.eligible.is_(True))
        .all()
    )
    proposal.yes_count = sum(1 for v in votes if v.direction == "up")
    proposal.no_count = sum(1 for v in votes if v.direction == "down")
    proposal.net = proposal.yes_count - proposal.no_count

    if proposal.state != "pending":
        return proposal

    if proposal.net >= config.voting.adopt_threshold:
        proposal.state = "adopted"
        proposal.decided_at = datetime.now(timezone.utc)
        logger.info("[PROPOSAL] id=%s adopted net=%s", proposal.id, proposal.net)
    elif proposal.net <= -config.voting.reject_threshold:
        proposal.state = "rejected"
        proposal.decided_at = datetime.now(timezone.utc)
        logger.info("[PROPOSAL] id=%s rejected net=%s", proposal.id, proposal.net)
    elif proposal.net == 0 and (proposal.yes_count or proposal.no_count):
        logger.info(
            "[VOTE-TIE] proposal=%s yes=%s no=%s stays pending for review",
            proposal.id, proposal.yes_count, proposal.no_count,
        )
    return proposal


def cast_vote(
    db: Session, user_id: int, proposal_id: int, direction: str, config: Optional[ProgressionConfig] = None
) -> VoteResult:
    config = config or get_config()
    user = _require_user(db, user_id)
    proposal = get_proposal(db, proposal_id)
    direction = normalize_direction(direction)

    existing = (
        db.query(Vote)
        .filter(Vote.user_id == user_id, Vote.proposal_id == proposal_id)
        .first()
    )
    if existing:
        logger.info(
            "[VOTE] repeat vote ignored user=%s proposal=%s kept=%s", user_id, proposal_id, existing.direction,
        )
        return VoteResult(vote=existing, accepted=False, proposal=proposal)

    if proposal.state != "pending":
        raise ProposalClosedError(f"proposal {proposal_id} is already {proposal.state}")

    eligible = user.level >= config.voting.reputation_min_level
    vote = Vote(user_id=user_id, proposal_id=proposal_id, direction=direction, eligible=eligible)
    db.add(vote)
    try:
        db.flush()
    except IntegrityError:
        # Lost a race against the same user's other request; theirs is the vote
        db.rollback()
        existing = (
            db.query(Vote)
            .filter(Vote.user_id == user_id, Vote.proposal_id == proposal_id)
            .one()
        )
        return VoteResult(vote=existing, accepted=False, proposal=get_proposal(db, proposal_id))

    recompute_tally(db, proposal, config)
    db.commit()
    db.refresh(vote)
    db.refresh(proposal)
    logger.info(
        "[VOTE] user=%s proposal=%s direction=%s eligible=%s net=%s",
        user_id, proposal_id, direction, eligible, proposal.net,
    )
    return VoteResult(vote=vote, accepted=True, proposal=proposal)

"""
Roadmap proposal and voting routes.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from skillforge.api.deps import get_progression_config, http_error
from skillforge.core.config import ProgressionConfig
from skillforge.core.errors import ProgressionError
from skillforge.db.session import get_db
from skillforge.voting.aggregator import cast_vote, create_proposal, get_proposal

router = APIRouter(prefix="/proposals", tags=["voting"])


class ProposalCreate(BaseModel):
    author_id: int
    title: str
    description: str = ""
    roadmap: str = ""


class VoteCast(BaseModel):
    user_id: int
    direction: str


@router.post("", status_code=201)
def new_proposal(body: ProposalCreate, db: Session = Depends(get_db)):
    try:
        proposal = create_proposal(db, body.author_id, body.title, body.description, body.roadmap)
    except ProgressionError as e:
        raise http_error(e) from e
    return proposal.to_dict()


@router.get("/{proposal_id}")
def read_proposal(proposal_id: int, db: Session = Depends(get_db)):
    try:
        return get_proposal(db, proposal_id).to_dict()
    except ProgressionError as e:
        raise http_error(e) from e


@router.post("/{proposal_id}/votes")
def vote(
    proposal_id: int,
    body: VoteCast,
    db: Session = Depends(get_db),
    config: ProgressionConfig = Depends(get_progression_config),
):
    try:
        result = cast_vote(db, body.user_id, proposal_id, body.direction, config)
    except ProgressionError as e:
        raise http_error(e) from e
    return result.to_dict()

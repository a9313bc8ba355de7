"""
Player routes: registration, status snapshot, ledger history, rebuild/verify, job change.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from skillforge.api.deps import get_progression_config, http_error
from skillforge.badges.evaluator import get_user_badges
from skillforge.core.config import ProgressionConfig
from skillforge.core.errors import ProgressionError
from skillforge.db.session import get_db
from skillforge.ledger import ledger
from skillforge.players.service import create_user, get_user
from skillforge.progression.ingest import change_job
from skillforge.projection.builder import get_player_status, rebuild_projection, verify_projection

router = APIRouter(prefix="/players", tags=["players"])


class PlayerCreate(BaseModel):
    username: str


class JobChangeRequest(BaseModel):
    job_class: str
    idempotency_key: str


@router.post("", status_code=201)
def register_player(
    body: PlayerCreate,
    db: Session = Depends(get_db),
    config: ProgressionConfig = Depends(get_progression_config),
):
    try:
        user = create_user(db, body.username, config)
        return get_player_status(db, user.id, config).to_dict()
    except ProgressionError as e:
        raise http_error(e) from e


@router.get("/{user_id}/status")
def player_status(
    user_id: int,
    db: Session = Depends(get_db),
    config: ProgressionConfig = Depends(get_progression_config),
):
    try:
        return get_player_status(db, user_id, config).to_dict()
    except ProgressionError as e:
        raise http_error(e) from e


@router.get("/{user_id}/events")
def player_events(
    user_id: int,
    after: int = Query(0, ge=0),
    source: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Ledger history in sequence order, optionally only the tail after *after*."""
    try:
        get_user(db, user_id)
    except ProgressionError as e:
        raise http_error(e) from e
    events = ledger.replay(db, user_id, after_sequence=after)
    if source:
        events = [e for e in events if e.source == source]
    return {"user_id": user_id, "events": [e.to_dict() for e in events]}


@router.get("/{user_id}/badges")
def player_badges(user_id: int, db: Session = Depends(get_db)):
    try:
        get_user(db, user_id)
    except ProgressionError as e:
        raise http_error(e) from e
    return {"user_id": user_id, "badges": get_user_badges(db, user_id)}


@router.post("/{user_id}/rebuild")
def rebuild_player(
    user_id: int,
    db: Session = Depends(get_db),
    config: ProgressionConfig = Depends(get_progression_config),
):
    try:
        return rebuild_projection(db, user_id, config).to_dict()
    except ProgressionError as e:
        raise http_error(e) from e


@router.post("/{user_id}/verify")
def verify_player(
    user_id: int,
    db: Session = Depends(get_db),
    config: ProgressionConfig = Depends(get_progression_config),
):
    try:
        snapshot = verify_projection(db, user_id, config)
    except ProgressionError as e:
        raise http_error(e) from e
    return {"consistent": True, "status": snapshot.to_dict()}


@router.post("/{user_id}/job")
def change_player_job(
    user_id: int,
    body: JobChangeRequest,
    db: Session = Depends(get_db),
    config: ProgressionConfig = Depends(get_progression_config),
):
    if not body.idempotency_key.strip():
        raise HTTPException(status_code=422, detail="idempotency_key is required")
    try:
        result = change_job(db, user_id, body.job_class, body.idempotency_key, config)
        status = get_player_status(db, user_id, config)
    except ProgressionError as e:
        raise http_error(e) from e
    return {"result": result.to_dict(), "status": status.to_dict()}

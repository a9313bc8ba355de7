"""
Quest routes: catalog listing and the per-instance lifecycle.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from skillforge.api.deps import get_progression_config, http_error
from skillforge.core.config import ProgressionConfig
from skillforge.core.errors import ProgressionError
from skillforge.db.session import get_db
from skillforge.quests.models import Quest
from skillforge.quests.state_machine import (
    claim_event_key,
    claim_quest,
    complete_quest,
    instance_to_dict,
    offer_quest,
    start_quest,
)

router = APIRouter(tags=["quests"])


class InstanceAction(BaseModel):
    user_id: int


class ClaimRequest(BaseModel):
    user_id: int
    idempotency_key: Optional[str] = None


@router.get("/quests")
def list_quests(category: Optional[str] = None, db: Session = Depends(get_db)):
    q = db.query(Quest).filter(Quest.is_active.is_(True))
    if category:
        q = q.filter(Quest.category == category)
    return [
        {
            "key": quest.key,
            "title": quest.title,
            "description": quest.description,
            "category": quest.category,
            "xp_reward": quest.xp_reward,
            "skill_rewards": quest.skill_rewards or {},
            "tags": quest.tags or [],
            "min_level": quest.min_level,
            "requires_quest": quest.requires_quest,
        }
        for quest in q.order_by(Quest.category.asc(), Quest.key.asc()).all()
    ]


@router.post("/players/{user_id}/quests/{quest_key}/offer")
def offer(user_id: int, quest_key: str, db: Session = Depends(get_db)):
    try:
        instance = offer_quest(db, user_id, quest_key)
    except ProgressionError as e:
        raise http_error(e) from e
    return instance_to_dict(db, instance)


@router.post("/quest-instances/{instance_id}/start")
def start(instance_id: int, body: InstanceAction, db: Session = Depends(get_db)):
    try:
        instance = start_quest(db, body.user_id, instance_id)
    except ProgressionError as e:
        raise http_error(e) from e
    return instance_to_dict(db, instance)


@router.post("/quest-instances/{instance_id}/complete")
def complete(instance_id: int, body: InstanceAction, db: Session = Depends(get_db)):
    try:
        instance = complete_quest(db, body.user_id, instance_id)
    except ProgressionError as e:
        raise http_error(e) from e
    return instance_to_dict(db, instance)


@router.post("/quest-instances/{instance_id}/claim")
def claim(
    instance_id: int,
    body: ClaimRequest,
    db: Session = Depends(get_db),
    config: ProgressionConfig = Depends(get_progression_config),
):
    """A second claim answers 200 with claimed=false; the XP was granted once."""
    key = (body.idempotency_key or "").strip() or claim_event_key(instance_id)
    try:
        instance, result = claim_quest(db, body.user_id, instance_id, key, config)
    except ProgressionError as e:
        raise http_error(e) from e
    return {
        "claimed": result is not None,
        "instance": instance_to_dict(db, instance),
        "result": result.to_dict() if result else None,
    }

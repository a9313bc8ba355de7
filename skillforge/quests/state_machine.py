"""
Quest lifecycle.

Core rules:
  - offered -> in_progress -> completed -> claimed, strictly forward
  - repeating the current state is a no-op, anything else is an error
  - claim is the only transition that grants XP, through the ledger
  - claiming twice returns the claimed instance; XP lands once
  - offering policy per category:
      daily  one instance per UTC day
      main   once per user, gated by the prerequisite quest being claimed
      side   once per user
"""
import logging
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from skillforge.core.config import ProgressionConfig, get_config
from skillforge.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from skillforge.ledger.ledger import AppendResult, NewEvent
from skillforge.players.models import User
from skillforge.progression import ingest
from skillforge.quests.models import QUEST_STATES, Quest, QuestInstance

logger = logging.getLogger(__name__)


def claim_event_key(instance_id: int) -> str:
    return f"quest_claim:{instance_id}"


def get_quest(db: Session, quest_key: str) -> Quest:
    quest = (
        db.query(Quest)
        .filter(Quest.key == quest_key, Quest.is_active.is_(True))
        .first()
    )
    if not quest:
        raise NotFoundError(f"quest '{quest_key}' not found")
    return quest


def get_instance(db: Session, user_id: int, instance_id: int) -> QuestInstance:
    instance = (
        db.query(QuestInstance)
        .filter(QuestInstance.id == instance_id, QuestInstance.user_id == user_id)
        .first()
    )
    if not instance:
        raise NotFoundError(f"quest instance {instance_id} not found for user {user_id}")
    return instance


def _has_claimed(db: Session, user_id: int, quest_key: str) -> bool:
    return (
        db.query(QuestInstance.id)
        .join(Quest, Quest.id == QuestInstance.quest_id)
        .filter(
            QuestInstance.user_id == user_id,
            Quest.key == quest_key,
            QuestInstance.state == "claimed",
        )
        .first()
        is not None
    )


def offering_period(quest: Quest, today: date) -> str:
    return today.isoformat() if quest.category == "daily" else "once"


def offer_quest(db: Session, user_id: int, quest_key: str, today: Optional[date] = None) -> QuestInstance:
    """Offer *quest_key* to the user, or return the instance already offered this period."""
    today = today or datetime.now(timezone.utc).date()
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f"user {user_id} not found")
    quest = get_quest(db, quest_key)

    period = offering_period(quest, today)
    existing = (
        db.query(QuestInstance)
        .filter(
            QuestInstance.user_id == user_id,
            QuestInstance.quest_id == quest.id,
            QuestInstance.period == period,
        )
        .first()
    )
    if existing:
        return existing

    if user.level < quest.min_level:
        raise ValidationError(f"quest '{quest.key}' needs level {quest.min_level}, user is {user.level}")
    if quest.requires_quest and not _has_claimed(db, user_id, quest.requires_quest):
        raise ValidationError(f"quest '{quest.key}' is locked until '{quest.requires_quest}' is claimed")

    instance = QuestInstance(user_id=user_id, quest_id=quest.id, period=period, state="offered")
    db.add(instance)
    try:
        db.commit()
    except IntegrityError:
        # Offered concurrently; the other request's instance wins
        db.rollback()
        return (
            db.query(QuestInstance)
            .filter(
                QuestInstance.user_id == user_id,
                QuestInstance.quest_id == quest.id,
                QuestInstance.period == period,
            )
            .one()
        )
    db.refresh(instance)
    logger.info("[QUEST] offered user=%s quest='%s' period=%s id=%s", user_id, quest.key, period, instance.id)
    return instance


def _advance(db: Session, instance: QuestInstance, target: str, stamp: str) -> QuestInstance:
    current = QUEST_STATES.index(instance.state)
    wanted = QUEST_STATES.index(target)
    if current == wanted:
        return instance
    if wanted != current + 1:
        raise InvalidTransitionError(
            f"quest instance {instance.id} cannot go from '{instance.state}' to '{target}'"
        )
    instance.state = target
    setattr(instance, stamp, datetime.now(timezone.utc))
    db.commit()
    db.refresh(instance)
    logger.info("[QUEST] user=%s instance=%s -> %s", instance.user_id, instance.id, target)
    return instance


def start_quest(db: Session, user_id: int, instance_id: int) -> QuestInstance:
    return _advance(db, get_instance(db, user_id, instance_id), "in_progress", "started_at")


def complete_quest(db: Session, user_id: int, instance_id: int) -> QuestInstance:
    return _advance(db, get_instance(db, user_id, instance_id), "completed", "completed_at")


def claim_quest(
    db: Session,
    user_id: int,
    instance_id: int,
    idempotency_key: str,
    config: Optional[ProgressionConfig] = None,
) -> tuple[QuestInstance, Optional[ingest.SubmitResult]]:
    """
    Claim rewards for a completed instance.

    Returns (instance, submit result). The result is None when the instance
    was already claimed: the second claim is a no-op, not an error.
    """
    config = config or get_config()
    instance = get_instance(db, user_id, instance_id)
    if instance.state == "claimed":
        return instance, None
    if instance.state != "completed":
        raise InvalidTransitionError(
            f"quest instance {instance.id} is '{instance.state}', only completed quests can be claimed"
        )

    quest = db.query(Quest).filter(Quest.id == instance.quest_id).one()
    payload = ingest.normalize_payload(
        "quest_completion",
        {
            "quest_key": quest.key,
            "tags": list(quest.tags or []),
            "xp": int(quest.xp_reward),
            "skill_xp": dict(quest.skill_rewards or {}),
        },
        config,
    )

    def mark_claimed(appended: AppendResult) -> None:
        instance.state = "claimed"
        instance.claimed_at = datetime.now(timezone.utc)
        instance.claim_key = idempotency_key
        instance.claim_sequence = appended.sequence

    event = NewEvent(
        idempotency_key=claim_event_key(instance.id),
        user_id=user_id,
        source="quest_completion",
        payload=payload,
    )
    result = ingest.submit(db, event, config, before_commit=mark_claimed)
    db.refresh(instance)
    if not result.accepted:
        # Another claim won the race; its XP is the only XP
        return instance, None
    logger.info(
        "[QUEST] claimed user=%s instance=%s quest='%s' seq=%s",
        user_id, instance.id, quest.key, result.sequence,
    )
    return instance, result


def instance_to_dict(db: Session, instance: QuestInstance) -> dict:
    quest = db.query(Quest).filter(Quest.id == instance.quest_id).first()
    return {
        "id": instance.id,
        "user_id": instance.user_id,
        "quest_key": quest.key if quest else None,
        "category": quest.category if quest else None,
        "period": instance.period,
        "state": instance.state,
        "claim_sequence": instance.claim_sequence,
        "claimed_at": str(instance.claimed_at) if instance.claimed_at else None,
    }

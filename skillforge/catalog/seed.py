"""
Quest and badge catalog loading.

Upserts templates by key; never deletes, so existing instances and awards
keep pointing at valid rows.
"""
import json
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from skillforge.badges.models import Badge
from skillforge.core.errors import ValidationError
from skillforge.quests.models import QUEST_CATEGORIES, Quest
from skillforge.rules.predicates import validate_rule

logger = logging.getLogger(__name__)

DEFAULT_CATALOG = Path(__file__).resolve().parent / "default_catalog.json"


def _key(raw) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("catalog entries need a non-empty key")
    return raw.strip().lower()


def _upsert_quest(db: Session, data: dict) -> Quest:
    key = _key(data.get("key"))
    category = data.get("category", "side")
    if category not in QUEST_CATEGORIES:
        raise ValidationError(f"quest '{key}' has unknown category '{category}'")
    if int(data.get("xp_reward", 0)) < 0:
        raise ValidationError(f"quest '{key}' has a negative xp_reward")

    quest = db.query(Quest).filter(Quest.key == key).first()
    if quest is None:
        quest = Quest(key=key)
        db.add(quest)
    quest.title = data.get("title", key)
    quest.description = data.get("description", "")
    quest.category = category
    quest.xp_reward = int(data.get("xp_reward", 0))
    quest.skill_rewards = {k.strip().lower(): int(v) for k, v in (data.get("skill_rewards") or {}).items()}
    quest.tags = sorted({t.strip().lower() for t in data.get("tags") or []})
    quest.min_level = int(data.get("min_level", 1))
    quest.requires_quest = _key(data["requires_quest"]) if data.get("requires_quest") else None
    quest.is_active = bool(data.get("is_active", True))
    return quest


def _upsert_badge(db: Session, data: dict) -> Badge:
    key = _key(data.get("key"))
    predicate = validate_rule(data.get("predicate"))
    if int(data.get("xp_bonus", 0)) < 0:
        raise ValidationError(f"badge '{key}' has a negative xp_bonus")

    badge = db.query(Badge).filter(Badge.key == key).first()
    if badge is None:
        badge = Badge(key=key)
        db.add(badge)
    badge.label = data.get("label", key)
    badge.icon = data.get("icon", "")
    badge.description = data.get("description", "")
    badge.predicate = predicate
    badge.xp_bonus = int(data.get("xp_bonus", 0))
    badge.is_active = bool(data.get("is_active", True))
    return badge


def seed_catalog(db: Session, catalog: dict) -> tuple[int, int]:
    """Upsert every quest and badge in *catalog*. Returns (quests, badges)."""
    quests = [_upsert_quest(db, q) for q in catalog.get("quests", [])]
    badges = [_upsert_badge(db, b) for b in catalog.get("badges", [])]
    db.commit()
    logger.info("[CATALOG] upserted quests=%s badges=%s", len(quests), len(badges))
    return len(quests), len(badges)


def load_catalog(path: Optional[str] = None) -> dict:
    with Path(path or DEFAULT_CATALOG).open(encoding="utf-8") as fh:
        return json.load(fh)

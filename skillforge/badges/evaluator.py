"""
Badge award evaluation.

Core rules:
  - predicates are evaluated against the full-history facts after every
    accepted ledger append for the user
  - an award is recorded in the ledger as a badge_trigger event keyed
    "badge:<key>", so it happens at most once and survives a replay
  - awards are never revoked
"""
import logging

from sqlalchemy.orm import Session

from skillforge.badges.models import Badge, BadgeAward
from skillforge.ledger import ledger
from skillforge.leveling.state import ProgressionState
from skillforge.rules.predicates import evaluate

logger = logging.getLogger(__name__)


def award_key(badge_key: str) -> str:
    return f"badge:{badge_key}"


def due_badges(db: Session, state: ProgressionState) -> list[Badge]:
    """Active badges whose predicate now holds and that the ledger has not awarded yet."""
    owned = set(state.badges)
    badges = (
        db.query(Badge)
        .filter(Badge.is_active.is_(True))
        .order_by(Badge.key.asc())
        .all()
    )
    return [b for b in badges if b.key not in owned and evaluate(b.predicate, state)]


def record_award(db: Session, user_id: int, badge: Badge, sequence: int) -> BadgeAward:
    """Insert the BadgeAward row for a badge_trigger already in the ledger. Caller commits."""
    existing = (
        db.query(BadgeAward)
        .filter(BadgeAward.user_id == user_id, BadgeAward.badge_id == badge.id)
        .first()
    )
    if existing:
        return existing
    award = BadgeAward(user_id=user_id, badge_id=badge.id, sequence=sequence)
    db.add(award)
    logger.info("[BADGE] user=%s earned '%s' seq=%s", user_id, badge.key, sequence)
    return award


def _award_rows(db: Session, user_id: int) -> dict:
    rows = (
        db.query(BadgeAward, Badge)
        .join(Badge, Badge.id == BadgeAward.badge_id)
        .filter(BadgeAward.user_id == user_id)
        .all()
    )
    return {badge.key: award for award, badge in rows}


def award_drift(db: Session, user_id: int, state: ProgressionState) -> tuple[list, list]:
    """
    Compare BadgeAward rows with the badges the ledger fold holds.

    Returns (missing, extra): catalog badges the ledger awarded that have no
    row, and rows the ledger does not back. Awards whose catalog entry was
    deleted cannot have a row and are not reported.
    """
    held = set(_award_rows(db, user_id))
    owned = set(state.badges)
    in_catalog = {b.key for b in db.query(Badge).filter(Badge.key.in_(owned)).all()} if owned else set()
    return sorted(in_catalog - held), sorted(held - owned)


def sync_awards(db: Session, user_id: int, state: ProgressionState) -> None:
    """Make BadgeAward rows match the ledger fold. Caller commits."""
    missing, extra = award_drift(db, user_id, state)
    if missing:
        sequences = {
            (event.payload or {}).get("badge"): event.sequence
            for event in ledger.events_by_source(db, user_id, "badge_trigger")
        }
        for badge in db.query(Badge).filter(Badge.key.in_(missing)).all():
            record_award(db, user_id, badge, sequences.get(badge.key, state.last_sequence))
    if extra:
        rows = _award_rows(db, user_id)
        for key in extra:
            logger.warning("[BADGE] user=%s dropping award row '%s' the ledger does not back", user_id, key)
            db.delete(rows[key])


def get_user_badges(db: Session, user_id: int) -> list[dict]:
    """Every active badge with earned / not-earned status, for display."""
    earned = {key: award.earned_at for key, award in _award_rows(db, user_id).items()}
    result = []
    for badge in db.query(Badge).filter(Badge.is_active.is_(True)).order_by(Badge.key.asc()).all():
        item = {
            "key": badge.key,
            "icon": badge.icon,
            "label": badge.label,
            "desc": badge.description,
            "earned": badge.key in earned,
        }
        if badge.key in earned:
            item["earned_at"] = str(earned[badge.key]) if earned[badge.key] else None
        result.append(item)
    return result

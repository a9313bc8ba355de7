"""
Signal Ingestor: the one door into the ledger.

Core rules:
  - every external signal is validated and normalized into a ProgressionEvent
  - events for one user are applied strictly one at a time (user_lock)
  - a replayed idempotency key is a no-op that returns the prior result
  - each accepted event is folded into the aggregates in the same commit
  - badge predicates are re-checked after every accepted event until nothing
    new is due; awards are themselves ledger events
  - notifications go out only after the commit
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from skillforge.badges.evaluator import award_key, due_badges
from skillforge.badges.models import Badge
from skillforge.core import notifications
from skillforge.core.config import ProgressionConfig, get_config
from skillforge.core.errors import DuplicateEventError, NotFoundError, ValidationError
from skillforge.core.locks import user_lock
from skillforge.leveling.calculator import LevelingOutcome, job_change_eligible
from skillforge.leveling.state import ProgressionState
from skillforge.ledger import ledger
from skillforge.ledger.ledger import AppendResult, NewEvent
from skillforge.ledger.models import SOURCES
from skillforge.players.models import User
from skillforge.projection.builder import advance, fold, load_cached_state, save_state

logger = logging.getLogger(__name__)


@dataclass
class SubmitResult:
    accepted: bool
    sequence: int
    resulting_level: int
    xp: int
    level_ups: list = field(default_factory=list)
    unlocked_badges: list = field(default_factory=list)
    hidden_skills_unlocked: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "sequence": self.sequence,
            "resulting_level": self.resulting_level,
            "xp": self.xp,
            "level_ups": [lu.to_dict() for lu in self.level_ups],
            "unlocked_badges": list(self.unlocked_badges),
            "hidden_skills_unlocked": list(self.hidden_skills_unlocked),
        }


# ---------------------------------------------------------------------------
# PAYLOAD VALIDATION
# ---------------------------------------------------------------------------

def _non_negative_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < 0:
        raise ValidationError(f"{name} must be >= 0 (XP never decreases)")
    return value


def _skill_name(raw, name: str = "skill") -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError(f"{name} must be a non-empty string")
    return raw.strip().lower()


def _skill_xp(raw) -> dict:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("skill_xp must be an object of skill -> xp")
    result = {}
    for skill, xp in raw.items():
        key = _skill_name(skill)
        result[key] = result.get(key, 0) + _non_negative_int(xp, f"skill_xp[{skill!r}]")
    return result


def _string_list(raw, name: str) -> list:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError(f"{name} must be a list")
    return sorted({_skill_name(v, name) for v in raw})


def normalize_payload(source: str, payload, config: ProgressionConfig) -> dict:
    """Validate a raw payload for *source* and return its canonical form."""
    if source not in SOURCES:
        raise ValidationError(f"unknown event source '{source}'")
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object")

    skill_xp = _skill_xp(payload.get("skill_xp"))
    out: dict = {}

    if source == "manual_exercise":
        if "skill" in payload:
            skill = _skill_name(payload["skill"])
            gained = _non_negative_int(payload.get("xp", 0), "xp")
            skill_xp[skill] = skill_xp.get(skill, 0) + gained
        if not skill_xp:
            raise ValidationError("manual_exercise needs a skill and xp, or skill_xp")
        if "exercise" in payload:
            out["exercise"] = str(payload["exercise"])

    elif source == "quest_completion":
        out["quest_key"] = _skill_name(payload.get("quest_key"), "quest_key")
        out["tags"] = _string_list(payload.get("tags"), "tags")

    elif source == "github_analysis":
        content_hash = payload.get("content_hash")
        if not isinstance(content_hash, str) or not content_hash.strip():
            raise ValidationError("github_analysis needs a content_hash")
        out["content_hash"] = content_hash.strip()
        out["estimate"] = _skill_xp(payload.get("estimate"))
        out["skip_test"] = _string_list(payload.get("skip_test"), "skip_test")

    elif source == "badge_trigger":
        out["badge"] = _skill_name(payload.get("badge"), "badge")

    elif source == "job_change":
        job_class = payload.get("job_class")
        if job_class not in config.job_classes:
            raise ValidationError(f"unknown job class '{job_class}'")
        if payload.get("xp") or skill_xp:
            raise ValidationError("job_change events carry no XP")
        out["job_class"] = job_class

    # A single-skill exercise already folded its xp into skill_xp
    explicit_xp = "xp" in payload and not (source == "manual_exercise" and "skill" in payload)
    if explicit_xp:
        out["xp"] = _non_negative_int(payload["xp"], "xp")

    out["skill_xp"] = skill_xp
    return out


# ---------------------------------------------------------------------------
# APPEND + FOLD
# ---------------------------------------------------------------------------

def _require_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f"user {user_id} not found")
    return user


def _append_and_fold(
    db: Session, event: NewEvent, config: ProgressionConfig
) -> tuple[AppendResult, Optional[LevelingOutcome], ProgressionState]:
    """
    Append one event and fold the ledger tail into the aggregates (no commit).

    Nothing is written before the append, so a sequence conflict inside the
    ledger can roll back safely.
    """
    base = load_cached_state(db, event.user_id, config)
    try:
        result = ledger.append(db, event)
    except DuplicateEventError as exc:
        prior = ledger.find_by_key(db, exc.user_id, exc.idempotency_key)
        result = AppendResult(accepted=False, sequence=exc.sequence, event=prior)

    if not result.accepted:
        return result, None, advance(db, event.user_id, config)

    tail = ledger.replay(db, event.user_id, after_sequence=base.last_sequence)
    state, outcomes = fold(tail, config, base)
    save_state(db, event.user_id, state, config)
    return result, outcomes[-1], state


def _award_due_badges(db: Session, user_id: int, config: ProgressionConfig, result: SubmitResult) -> None:
    """Award until nothing more is due; a badge bonus can unlock another badge."""
    while True:
        state = load_cached_state(db, user_id, config)
        due = due_badges(db, state)
        if not due:
            return
        for badge in due:
            event = NewEvent(
                idempotency_key=award_key(badge.key),
                user_id=user_id,
                source="badge_trigger",
                payload={"badge": badge.key, "xp": int(badge.xp_bonus), "skill_xp": {}},
            )
            appended, outcome, state = _append_and_fold(db, event, config)
            db.commit()
            if appended.accepted:
                result.unlocked_badges.append(badge.key)
                _merge_outcome(result, outcome, state)


def _merge_outcome(result: SubmitResult, outcome: Optional[LevelingOutcome], state: ProgressionState) -> None:
    result.resulting_level = state.level
    result.xp = state.total_xp
    if outcome is not None:
        result.level_ups.extend(outcome.level_ups)
        result.hidden_skills_unlocked.extend(outcome.hidden_skills_unlocked)


def _publish(user_id: int, result: SubmitResult, eligible_now: bool) -> None:
    for level_up in result.level_ups:
        logger.info("[LEVEL-UP] user=%s -> %s (seq=%s)", user_id, level_up.level, level_up.sequence)
        notifications.publish("level_up", level_up.to_dict())
    for key in result.hidden_skills_unlocked:
        logger.info("[HIDDEN-SKILL] user=%s unlocked '%s'", user_id, key)
        notifications.publish("hidden_skill_unlocked", {"user_id": user_id, "skill": key})
    for key in result.unlocked_badges:
        notifications.publish("badge_awarded", {"user_id": user_id, "badge": key})
    if eligible_now:
        logger.info("[JOB-CHANGE] user=%s is eligible for a job change", user_id)
        notifications.publish("job_change_eligible", {"user_id": user_id, "level": result.resulting_level})


def submit(
    db: Session,
    event: NewEvent,
    config: Optional[ProgressionConfig] = None,
    before_commit: Optional[Callable[[AppendResult], None]] = None,
    precheck: Optional[Callable[[ProgressionState], None]] = None,
) -> SubmitResult:
    """
    Serialize, append, fold, award. *event.payload* must already be normalized.

    *precheck* sees the current state under the user lock and may raise;
    *before_commit* runs after an accepted append, inside the same commit.
    """
    config = config or get_config()
    _require_user(db, event.user_id)

    with user_lock(event.user_id):
        if precheck is not None:
            precheck(advance(db, event.user_id, config))
            db.commit()

        was_eligible = job_change_eligible(load_cached_state(db, event.user_id, config), config)

        appended, outcome, state = _append_and_fold(db, event, config)
        if appended.accepted and before_commit is not None:
            before_commit(appended)
        db.commit()

        result = SubmitResult(
            accepted=appended.accepted,
            sequence=appended.sequence,
            resulting_level=state.level,
            xp=state.total_xp,
        )
        if appended.accepted:
            _merge_outcome(result, outcome, state)
            _award_due_badges(db, event.user_id, config, result)

        eligible_now = job_change_eligible(load_cached_state(db, event.user_id, config), config)

    _publish(event.user_id, result, eligible_now and not was_eligible)
    return result


def submit_event(
    db: Session,
    idempotency_key: str,
    user_id: int,
    source: str,
    payload: dict,
    occurred_at: Optional[datetime] = None,
    config: Optional[ProgressionConfig] = None,
) -> SubmitResult:
    """Ingestion boundary for external signals."""
    config = config or get_config()
    if source == "job_change":
        raise ValidationError("job changes go through change_job")
    payload = normalize_payload(source, payload, config)
    key = str(idempotency_key or "").strip()

    if source == "badge_trigger":
        # Manual award of a catalog badge: same ledger key as the evaluator
        # would use, so the badge still lands at most once.
        badge = db.query(Badge).filter(Badge.key == payload["badge"]).first()
        if badge is None:
            raise ValidationError(f"unknown badge '{payload['badge']}'")
        key = award_key(badge.key)
        payload.setdefault("xp", int(badge.xp_bonus))

    event = NewEvent(
        idempotency_key=key,
        user_id=user_id,
        source=source,
        payload=payload,
        occurred_at=occurred_at,
    )
    return submit(db, event, config)


def change_job(
    db: Session,
    user_id: int,
    job_class: str,
    idempotency_key: str,
    config: Optional[ProgressionConfig] = None,
) -> SubmitResult:
    """Switch job class at an unlocked level gate. All skill XP carries over."""
    config = config or get_config()
    payload = normalize_payload("job_change", {"job_class": job_class}, config)

    def precheck(state: ProgressionState) -> None:
        if ledger.find_by_key(db, user_id, idempotency_key) is not None:
            return
        if not job_change_eligible(state, config):
            raise ValidationError(f"user {user_id} has not reached a job-change level gate")
        if (state.job_class or config.default_job_class) == job_class:
            raise ValidationError(f"user {user_id} is already a {job_class}")

    event = NewEvent(
        idempotency_key=str(idempotency_key or "").strip(),
        user_id=user_id,
        source="job_change",
        payload=payload,
    )
    return submit(db, event, config, precheck=precheck)

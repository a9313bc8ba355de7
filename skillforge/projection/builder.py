"""
Projection Builder: the "player status" read view.

Core rules:
  - status is a fold of the ordered ledger, never mutated directly
  - incremental (cache + tail) and full replay must serialize byte-identically
  - User / SkillProgress / BadgeAward rows are written from the fold, nothing else
  - a disagreement with replay is surfaced, then repaired by rebuilding
"""
import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from skillforge.badges.evaluator import award_drift, sync_awards
from skillforge.core.config import STATS, ProgressionConfig
from skillforge.core.errors import InconsistentStateError, NotFoundError
from skillforge.leveling.calculator import (
    LevelTable,
    apply_event,
    job_change_eligible,
    skill_level,
)
from skillforge.leveling.state import ProgressionState, canonical_json
from skillforge.ledger import ledger
from skillforge.players.models import SkillProgress, User
from skillforge.projection.models import PlayerStatusCache

logger = logging.getLogger(__name__)


@dataclass
class PlayerStatusSnapshot:
    user_id: int
    username: str
    job_class: str
    job_change_eligible: bool
    level: int
    xp: int
    level_xp: int
    next_level_xp: Optional[int]
    hp: int
    mp: int
    stats: dict
    unspent_stat_points: int
    skills: list
    equipped_skills: list
    hidden_skills: list
    badges: list
    skip_test_skills: list
    last_sequence: int

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return canonical_json(self.to_dict())


# ---------------------------------------------------------------------------
# FOLD
# ---------------------------------------------------------------------------

def fold(events: Iterable, config: ProgressionConfig, state: Optional[ProgressionState] = None):
    """Apply *events* (in sequence order) on top of *state*. Returns (state, outcomes)."""
    state = state or ProgressionState()
    outcomes = []
    for event in events:
        state, outcome = apply_event(state, event, config)
        outcomes.append(outcome)
    return state, outcomes


def replay_state(db: Session, user_id: int, config: ProgressionConfig) -> ProgressionState:
    state, _ = fold(ledger.replay(db, user_id), config)
    return state


def derived_stats(state: ProgressionState, config: ProgressionConfig) -> dict:
    stats = {name: 0 for name in STATS}
    for skill, xp in state.skill_xp.items():
        stats[config.stat_for_skill(skill)] += skill_level(xp, config)
    return stats


def build_snapshot(
    state: ProgressionState, config: ProgressionConfig, user_id: int, username: str = ""
) -> PlayerStatusSnapshot:
    table = LevelTable(config.level_thresholds)
    skills = [
        {"skill": name, "xp": xp, "level": skill_level(xp, config)}
        for name, xp in sorted(state.skill_xp.items())
    ]
    ranked = sorted(state.skill_xp.items(), key=lambda kv: (-kv[1], kv[0]))
    equipped = [name for name, xp in ranked if xp > 0][: config.equipped_skill_slots]

    return PlayerStatusSnapshot(
        user_id=user_id,
        username=username,
        job_class=state.job_class or config.default_job_class,
        job_change_eligible=job_change_eligible(state, config),
        level=state.level,
        xp=state.total_xp,
        level_xp=table.threshold_for(state.level) or 0,
        next_level_xp=table.next_threshold(state.level),
        hp=config.hp_base + config.hp_per_level * (state.level - 1),
        mp=config.mp_base + config.mp_per_level * (state.level - 1),
        stats=derived_stats(state, config),
        unspent_stat_points=config.stat_points_per_level * (state.level - 1),
        skills=skills,
        equipped_skills=equipped,
        hidden_skills=list(state.hidden_skills),
        badges=list(state.badges),
        skip_test_skills=list(state.skip_test),
        last_sequence=state.last_sequence,
    )


# ---------------------------------------------------------------------------
# CACHE + AGGREGATES
# ---------------------------------------------------------------------------

def _get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f"user {user_id} not found")
    return user


def load_cached_state(db: Session, user_id: int, config: ProgressionConfig) -> ProgressionState:
    """Cached fold, or an empty state if there is none for this config."""
    cache = db.query(PlayerStatusCache).filter(PlayerStatusCache.user_id == user_id).first()
    if cache is None or cache.config_fingerprint != config.fingerprint:
        return ProgressionState()
    return ProgressionState.from_json(cache.state_json)


def save_state(db: Session, user_id: int, state: ProgressionState, config: ProgressionConfig) -> None:
    """Write the cache row and the User / SkillProgress aggregates. Caller commits."""
    cache = db.query(PlayerStatusCache).filter(PlayerStatusCache.user_id == user_id).first()
    if cache is None:
        cache = PlayerStatusCache(user_id=user_id)
        db.add(cache)
    cache.last_sequence = state.last_sequence
    cache.config_fingerprint = config.fingerprint
    cache.state_json = state.to_json()

    write_aggregates(db, user_id, state, config)


def expected_aggregates(state: ProgressionState, config: ProgressionConfig) -> dict:
    stats = derived_stats(state, config)
    return {
        "job_class": state.job_class or config.default_job_class,
        "level": state.level,
        "total_xp": state.total_xp,
        "hp": config.hp_base + config.hp_per_level * (state.level - 1),
        "mp": config.mp_base + config.mp_per_level * (state.level - 1),
        "stat_coding": stats["coding"],
        "stat_debugging": stats["debugging"],
        "stat_design": stats["design"],
        "stat_communication": stats["communication"],
        "unspent_stat_points": config.stat_points_per_level * (state.level - 1),
        "applied_sequence": state.last_sequence,
    }


def write_aggregates(db: Session, user_id: int, state: ProgressionState, config: ProgressionConfig) -> None:
    user = _get_user(db, user_id)
    for column, value in expected_aggregates(state, config).items():
        setattr(user, column, value)

    existing = {
        row.skill: row
        for row in db.query(SkillProgress).filter(SkillProgress.user_id == user_id).all()
    }
    for skill, xp in state.skill_xp.items():
        row = existing.get(skill)
        if row is None:
            row = SkillProgress(user_id=user_id, skill=skill)
            db.add(row)
        row.xp = xp
        row.level = skill_level(xp, config)
    # Rows for skills the ledger never mentions can only come from corruption
    for skill, row in existing.items():
        if skill not in state.skill_xp:
            db.delete(row)

    sync_awards(db, user_id, state)


def _aggregate_mismatches(db: Session, user: User, state: ProgressionState, config: ProgressionConfig) -> list:
    problems = []
    for column, value in expected_aggregates(state, config).items():
        actual = getattr(user, column)
        if actual != value:
            problems.append(f"users.{column}={actual!r} expected {value!r}")

    rows = db.query(SkillProgress).filter(SkillProgress.user_id == user.id).all()
    actual_skills = {r.skill: (r.xp, r.level) for r in rows}
    expected_skills = {s: (xp, skill_level(xp, config)) for s, xp in state.skill_xp.items()}
    if actual_skills != expected_skills:
        problems.append(f"skill_progress={actual_skills!r} expected {expected_skills!r}")

    missing, extra = award_drift(db, user.id, state)
    if missing:
        problems.append(f"badge_awards missing {missing!r}")
    if extra:
        problems.append(f"badge_awards not in ledger {extra!r}")
    return problems


# ---------------------------------------------------------------------------
# READ / REBUILD / VERIFY
# ---------------------------------------------------------------------------

def advance(db: Session, user_id: int, config: ProgressionConfig) -> ProgressionState:
    """Bring the cached fold up to the ledger tail (no commit)."""
    state = load_cached_state(db, user_id, config)
    tail = ledger.replay(db, user_id, after_sequence=state.last_sequence)
    if tail:
        state, _ = fold(tail, config, state)
        save_state(db, user_id, state, config)
    return state


def get_player_status(db: Session, user_id: int, config: ProgressionConfig) -> PlayerStatusSnapshot:
    user = _get_user(db, user_id)
    state = advance(db, user_id, config)
    db.commit()
    return build_snapshot(state, config, user_id, user.username)


def rebuild_projection(db: Session, user_id: int, config: ProgressionConfig) -> PlayerStatusSnapshot:
    """Throw away cached state and aggregates; rebuild them from a full replay."""
    user = _get_user(db, user_id)
    state = replay_state(db, user_id, config)
    save_state(db, user_id, state, config)
    db.commit()
    logger.info("[REBUILD] user=%s seq=%s level=%s xp=%s", user_id, state.last_sequence, state.level, state.total_xp)
    return build_snapshot(state, config, user_id, user.username)


def verify_projection(db: Session, user_id: int, config: ProgressionConfig) -> PlayerStatusSnapshot:
    """
    Compare incremental state and stored aggregates against a full replay.

    On any disagreement the projection is rebuilt from the ledger and
    InconsistentStateError is raised so operators see it; nothing is
    patched up by guessing.
    """
    user = _get_user(db, user_id)
    full = replay_state(db, user_id, config)

    cached = load_cached_state(db, user_id, config)
    problems = []
    if cached.last_sequence > full.last_sequence:
        problems.append(
            f"cache at sequence {cached.last_sequence} is ahead of ledger {full.last_sequence}"
        )
    else:
        tail = ledger.replay(db, user_id, after_sequence=cached.last_sequence)
        incremental, _ = fold(tail, config, cached)
        inc_json = build_snapshot(incremental, config, user_id, user.username).to_json()
        full_json = build_snapshot(full, config, user_id, user.username).to_json()
        if inc_json != full_json:
            problems.append("incremental snapshot differs from full replay")

    problems.extend(_aggregate_mismatches(db, user, full, config))

    if problems:
        detail = "; ".join(problems)
        logger.error("[INCONSISTENT] user=%s %s -- forcing rebuild", user_id, detail)
        rebuild_projection(db, user_id, config)
        raise InconsistentStateError(user_id, detail)

    return build_snapshot(full, config, user_id, user.username)

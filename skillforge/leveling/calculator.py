"""
Leveling Calculator.

Pure functions: given a ProgressionState and one ledger event, compute the
next state plus what changed (XP delta, level-ups, hidden skills, job-change
eligibility). No database access here; projection.builder folds the ledger
through apply_event and ingestion persists the result.
"""
import copy
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Optional

from skillforge.core.config import ProgressionConfig
from skillforge.core.errors import ValidationError
from skillforge.leveling.state import ProgressionState
from skillforge.rules.predicates import satisfied


class LevelTable:
    """
    XP -> level step function.

    thresholds[i] is the cumulative XP needed to reach level i + 1, so
    thresholds[0] must be 0. Non-decreasing thresholds make level(xp)
    monotonic; the curve itself is configuration.
    """

    def __init__(self, thresholds):
        thresholds = tuple(int(t) for t in thresholds)
        if not thresholds or thresholds[0] != 0:
            raise ValidationError("level table must start at 0 XP")
        if any(b < a for a, b in zip(thresholds, thresholds[1:])):
            raise ValidationError("level table thresholds must be non-decreasing")
        self.thresholds = thresholds

    @property
    def max_level(self) -> int:
        return len(self.thresholds)

    def level_for(self, xp: int) -> int:
        if xp < 0:
            raise ValidationError("XP cannot be negative")
        return bisect_right(self.thresholds, xp)

    def threshold_for(self, level: int) -> Optional[int]:
        """XP needed to reach *level*, or None beyond the table."""
        if level < 1 or level > self.max_level:
            return None
        return self.thresholds[level - 1]

    def next_threshold(self, level: int) -> Optional[int]:
        return self.threshold_for(level + 1)


@dataclass(frozen=True)
class LevelUp:
    """Notification for one crossed level. Delivery is someone else's job."""
    user_id: int
    level: int
    sequence: int

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "level": self.level, "sequence": self.sequence}


@dataclass
class LevelingOutcome:
    xp_delta: int
    skill_deltas: dict
    old_level: int
    new_level: int
    next_threshold: Optional[int]
    level_ups: list = field(default_factory=list)
    hidden_skills_unlocked: list = field(default_factory=list)
    job_change_eligible: bool = False
    became_job_change_eligible: bool = False


def event_xp(payload: dict) -> tuple[int, dict]:
    """(total XP delta, per-skill XP deltas) carried by a normalized payload."""
    skill_xp = {k: int(v) for k, v in (payload.get("skill_xp") or {}).items()}
    xp = payload.get("xp")
    if xp is None:
        xp = sum(skill_xp.values())
    return int(xp), skill_xp


def job_change_eligible(state: ProgressionState, config: ProgressionConfig) -> bool:
    """One job change is earned per configured level gate reached."""
    gates_reached = sum(1 for gate in config.job_change_levels if state.level >= gate)
    return gates_reached > state.job_changes


def hidden_skill_rules(config: ProgressionConfig) -> dict:
    return {r.key: r.rule for r in config.hidden_skills}


def _record_facts(state: ProgressionState, source: str, payload: dict) -> None:
    state.source_counts[source] = state.source_counts.get(source, 0) + 1

    if source == "quest_completion":
        quest_key = payload.get("quest_key")
        if quest_key:
            state.add_unique(state.quests, quest_key)
            for tag in payload.get("tags") or ():
                state.add_unique(state.quest_tags.setdefault(tag, []), quest_key)
    elif source == "badge_trigger":
        state.add_unique(state.badges, payload["badge"])
    elif source == "github_analysis":
        for skill, estimate in (payload.get("estimate") or {}).items():
            state.placement_estimate[skill] = max(state.placement_estimate.get(skill, 0), int(estimate))
        for skill in payload.get("skip_test") or ():
            state.add_unique(state.skip_test, skill)
    elif source == "job_change":
        state.job_class = payload["job_class"]
        state.job_changes += 1


def apply_event(state: ProgressionState, event, config: ProgressionConfig):
    """
    Fold one ledger event into *state*.

    *event* is anything with user_id, sequence, source and payload (a ledger
    row in practice). Returns (new_state, LevelingOutcome); *state* itself is
    left untouched.
    """
    if event.sequence <= state.last_sequence:
        raise ValidationError(
            f"event sequence {event.sequence} is not after applied sequence {state.last_sequence}"
        )

    table = LevelTable(config.level_thresholds)
    new = copy.deepcopy(state)
    payload = event.payload or {}

    xp_delta, skill_deltas = event_xp(payload)
    if xp_delta < 0 or any(v < 0 for v in skill_deltas.values()):
        raise ValidationError("XP deltas must be non-negative")

    was_eligible = job_change_eligible(state, config)

    new.total_xp += xp_delta
    for skill, delta in skill_deltas.items():
        new.skill_xp[skill] = new.skill_xp.get(skill, 0) + delta
    _record_facts(new, event.source, payload)

    old_level = state.level
    new.level = table.level_for(new.total_xp)
    new.last_sequence = event.sequence

    level_ups = [
        LevelUp(user_id=event.user_id, level=lvl, sequence=event.sequence)
        for lvl in range(old_level + 1, new.level + 1)
    ]

    unlocked = sorted(satisfied(hidden_skill_rules(config), new) - set(new.hidden_skills))
    for key in unlocked:
        new.add_unique(new.hidden_skills, key)

    eligible = job_change_eligible(new, config)

    outcome = LevelingOutcome(
        xp_delta=xp_delta,
        skill_deltas=skill_deltas,
        old_level=old_level,
        new_level=new.level,
        next_threshold=table.next_threshold(new.level),
        level_ups=level_ups,
        hidden_skills_unlocked=unlocked,
        job_change_eligible=eligible,
        became_job_change_eligible=eligible and not was_eligible,
    )
    return new, outcome


def skill_level(skill_xp: int, config: ProgressionConfig) -> int:
    return LevelTable(config.skill_level_thresholds).level_for(skill_xp)

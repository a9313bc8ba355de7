"""
Configuration for the progression engine.

Environment values come from the process environment (optionally seeded from
a .env file at the project root). Progression tunables - XP curve, skill
table, job gates, hidden-skill rules, assessment weights, vote thresholds -
live in a JSON file so they can be swapped without touching code.
"""
import hashlib
import json
import os
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from skillforge.core.errors import ValidationError
from skillforge.rules.predicates import validate_rule

env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_PROGRESSION_CONFIG = Path(__file__).resolve().parent / "default_progression.json"

# Optional override for the progression tunables file.
PROGRESSION_CONFIG_PATH = os.getenv("PROGRESSION_CONFIG_PATH", "").strip()

# Normalizer service that turns a code-hosting profile into a ProfileSnapshot.
# The engine never talks to the code-hosting API directly.
PROFILE_SOURCE_URL = os.getenv("PROFILE_SOURCE_URL", "").strip()
PROFILE_SOURCE_TIMEOUT_S = float(os.getenv("PROFILE_SOURCE_TIMEOUT_S", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

STATS = ("coding", "debugging", "design", "communication")


@dataclass(frozen=True)
class HiddenSkillRule:
    key: str
    label: str
    rule: dict


@dataclass(frozen=True)
class AssessmentConfig:
    discount_factor: float = 0.8
    confidence_threshold: float = 0.75
    full_confidence_commits: int = 500
    full_confidence_count: int = 50
    weights: dict = field(default_factory=dict)

    def weight(self, name: str) -> float:
        return float(self.weights.get(name, 0))


@dataclass(frozen=True)
class VotingConfig:
    adopt_threshold: int = 5
    reject_threshold: int = 5
    # Minimum player level for a vote to count toward the tally. 0 = no floor.
    reputation_min_level: int = 0


@dataclass(frozen=True)
class AnalysisConfig:
    max_attempts: int = 4
    backoff_base_s: float = 1.0
    backoff_factor: float = 2.0
    backoff_max_s: float = 30.0
    attempt_timeout_s: float = 20.0

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""
        delay = self.backoff_base_s * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.backoff_max_s)


@dataclass(frozen=True)
class ProgressionConfig:
    level_thresholds: tuple
    skill_level_thresholds: tuple
    job_change_levels: tuple = ()
    job_classes: tuple = ("apprentice",)
    default_job_class: str = "apprentice"
    hp_base: int = 100
    hp_per_level: int = 10
    mp_base: int = 50
    mp_per_level: int = 5
    stat_points_per_level: int = 3
    default_stat: str = "coding"
    skill_stats: dict = field(default_factory=dict)
    equipped_skill_slots: int = 4
    hidden_skills: tuple = ()
    assessment: AssessmentConfig = field(default_factory=AssessmentConfig)
    voting: VotingConfig = field(default_factory=VotingConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)

    @property
    def fingerprint(self) -> str:
        """Stable hash of the tunables; cached projections are only valid for one."""
        raw = json.dumps(asdict(self), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]

    def stat_for_skill(self, skill: str) -> str:
        return self.skill_stats.get(skill, self.default_stat)


def _check_table(name: str, table) -> tuple:
    if not table or table[0] != 0:
        raise ValidationError(f"{name} must start at 0")
    for prev, cur in zip(table, table[1:]):
        if cur < prev:
            raise ValidationError(f"{name} must be non-decreasing ({prev} -> {cur})")
    return tuple(int(v) for v in table)


def build_config(data: dict) -> ProgressionConfig:
    """Validate a raw config mapping and freeze it into a ProgressionConfig."""
    data = dict(data)
    data["level_thresholds"] = _check_table("level_thresholds", data.get("level_thresholds"))
    data["skill_level_thresholds"] = _check_table(
        "skill_level_thresholds", data.get("skill_level_thresholds")
    )
    data["job_change_levels"] = tuple(sorted(int(v) for v in data.get("job_change_levels", ())))
    data["job_classes"] = tuple(data.get("job_classes", ("apprentice",)))
    data["hidden_skills"] = tuple(
        HiddenSkillRule(key=r["key"], label=r.get("label", r["key"]), rule=validate_rule(r["rule"]))
        for r in data.get("hidden_skills", ())
    )
    data["assessment"] = AssessmentConfig(**data.get("assessment", {}))
    data["voting"] = VotingConfig(**data.get("voting", {}))
    data["analysis"] = AnalysisConfig(**data.get("analysis", {}))

    config = ProgressionConfig(**data)

    if config.default_job_class not in config.job_classes:
        raise ValidationError(f"default_job_class '{config.default_job_class}' is not a job class")
    if config.default_stat not in STATS:
        raise ValidationError(f"default_stat must be one of {STATS}")
    for skill, stat in config.skill_stats.items():
        if stat not in STATS:
            raise ValidationError(f"skill_stats[{skill!r}] maps to unknown stat {stat!r}")
    if not 0 < config.assessment.discount_factor <= 1:
        raise ValidationError("assessment.discount_factor must be in (0, 1]")
    if config.voting.adopt_threshold < 1 or config.voting.reject_threshold < 1:
        raise ValidationError("voting thresholds must be >= 1")
    return config


def load_config(path: Optional[str] = None) -> ProgressionConfig:
    config_path = Path(path or PROGRESSION_CONFIG_PATH or DEFAULT_PROGRESSION_CONFIG)
    with config_path.open(encoding="utf-8") as fh:
        return build_config(json.load(fh))


@lru_cache(maxsize=1)
def get_config() -> ProgressionConfig:
    """Process-wide progression config (FastAPI dependency)."""
    return load_config()

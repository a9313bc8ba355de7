"""
Per-user progression state: the accumulator of the ledger fold.

Besides XP and level it keeps the history facts the rule engine looks at
(per-source counts, distinct quests per tag, badges). Every field is either
a sum, a max or a sorted set, so two folds over the same events always
serialize to the same bytes.
"""
import json
from bisect import insort
from dataclasses import asdict, dataclass, field
from typing import Optional


@dataclass
class ProgressionState:
    last_sequence: int = 0
    total_xp: int = 0
    level: int = 1
    skill_xp: dict = field(default_factory=dict)
    source_counts: dict = field(default_factory=dict)
    quests: list = field(default_factory=list)
    quest_tags: dict = field(default_factory=dict)
    hidden_skills: list = field(default_factory=list)
    badges: list = field(default_factory=list)
    job_class: Optional[str] = None
    job_changes: int = 0
    # Highest assessment estimate applied per skill, and skills placed out of tests
    placement_estimate: dict = field(default_factory=dict)
    skip_test: list = field(default_factory=list)

    @staticmethod
    def add_unique(items: list, value: str) -> bool:
        """Insert into a sorted list; False if already there."""
        if value in items:
            return False
        insort(items, value)
        return True

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ProgressionState":
        return cls(**data)

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "ProgressionState":
        return cls.from_dict(json.loads(raw))


def canonical_json(data) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=True)

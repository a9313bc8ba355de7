"""
Declarative predicates over a player's event history.

Hidden-skill unlocks and badge awards are both written as small JSON rules,
e.g. {"kind": "distinct_quests_with_tag", "tag": "bug", "count": 5}, and
evaluated here against the facts accumulated by the ledger fold
(leveling.state.ProgressionState). Every fact is a count, a set or a sum, so
a rule gives the same answer no matter the order the events arrived in.
"""
from typing import Callable

from skillforge.core.errors import ValidationError


def _source_count(rule, facts) -> bool:
    return facts.source_counts.get(rule["source"], 0) >= rule["count"]


def _distinct_quests(rule, facts) -> bool:
    return len(facts.quests) >= rule["count"]


def _distinct_quests_with_tag(rule, facts) -> bool:
    return len(facts.quest_tags.get(rule["tag"], ())) >= rule["count"]


def _skill_xp_at_least(rule, facts) -> bool:
    return facts.skill_xp.get(rule["skill"], 0) >= rule["xp"]


def _skills_at_least(rule, facts) -> bool:
    return sum(1 for xp in facts.skill_xp.values() if xp >= rule["xp"]) >= rule["count"]


def _total_xp_at_least(rule, facts) -> bool:
    return facts.total_xp >= rule["xp"]


def _level_at_least(rule, facts) -> bool:
    return facts.level >= rule["level"]


def _has_badge(rule, facts) -> bool:
    return rule["badge"] in facts.badges


def _all_of(rule, facts) -> bool:
    return all(evaluate(r, facts) for r in rule["rules"])


def _any_of(rule, facts) -> bool:
    return any(evaluate(r, facts) for r in rule["rules"])


# kind -> (evaluator, required keys)
RULE_KINDS: dict[str, tuple[Callable, tuple]] = {
    "source_count": (_source_count, ("source", "count")),
    "distinct_quests": (_distinct_quests, ("count",)),
    "distinct_quests_with_tag": (_distinct_quests_with_tag, ("tag", "count")),
    "skill_xp_at_least": (_skill_xp_at_least, ("skill", "xp")),
    "skills_at_least": (_skills_at_least, ("xp", "count")),
    "total_xp_at_least": (_total_xp_at_least, ("xp",)),
    "level_at_least": (_level_at_least, ("level",)),
    "has_badge": (_has_badge, ("badge",)),
    "all_of": (_all_of, ("rules",)),
    "any_of": (_any_of, ("rules",)),
}


def validate_rule(rule) -> dict:
    """Raise ValidationError unless *rule* is a well-formed predicate tree."""
    if not isinstance(rule, dict):
        raise ValidationError(f"rule must be an object, got {type(rule).__name__}")
    kind = rule.get("kind")
    if kind not in RULE_KINDS:
        raise ValidationError(f"unknown rule kind '{kind}'")
    _, required = RULE_KINDS[kind]
    missing = [k for k in required if k not in rule]
    if missing:
        raise ValidationError(f"rule '{kind}' is missing {', '.join(missing)}")
    if kind in ("all_of", "any_of"):
        if not isinstance(rule["rules"], list) or not rule["rules"]:
            raise ValidationError(f"rule '{kind}' needs a non-empty list of rules")
        for child in rule["rules"]:
            validate_rule(child)
    return rule


def evaluate(rule: dict, facts) -> bool:
    evaluator, _ = RULE_KINDS[rule["kind"]]
    return evaluator(rule, facts)


def satisfied(rules: dict, facts) -> set:
    """Keys of every rule in a {key: rule} table that *facts* satisfies."""
    return {key for key, rule in rules.items() if evaluate(rule, facts)}

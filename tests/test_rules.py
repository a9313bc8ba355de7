import pytest

from skillforge.core.errors import ValidationError
from skillforge.leveling.state import ProgressionState
from skillforge.rules.predicates import evaluate, satisfied, validate_rule


@pytest.fixture
def facts():
    return ProgressionState(
        total_xp=900,
        level=6,
        skill_xp={"python": 400, "go": 300, "css": 10},
        source_counts={"quest_completion": 3, "manual_exercise": 1},
        quests=["a", "b", "c"],
        quest_tags={"bug": ["a", "c"]},
        badges=["first_quest"],
    )


@pytest.mark.parametrize(
    "rule, expected",
    [
        ({"kind": "source_count", "source": "quest_completion", "count": 3}, True),
        ({"kind": "source_count", "source": "github_analysis", "count": 1}, False),
        ({"kind": "distinct_quests", "count": 3}, True),
        ({"kind": "distinct_quests_with_tag", "tag": "bug", "count": 3}, False),
        ({"kind": "skill_xp_at_least", "skill": "python", "xp": 400}, True),
        ({"kind": "skills_at_least", "xp": 300, "count": 2}, True),
        ({"kind": "total_xp_at_least", "xp": 901}, False),
        ({"kind": "level_at_least", "level": 6}, True),
        ({"kind": "has_badge", "badge": "first_quest"}, True),
        (
            {"kind": "all_of", "rules": [
                {"kind": "level_at_least", "level": 5},
                {"kind": "has_badge", "badge": "nope"},
            ]},
            False,
        ),
        (
            {"kind": "any_of", "rules": [
                {"kind": "level_at_least", "level": 50},
                {"kind": "distinct_quests_with_tag", "tag": "bug", "count": 2},
            ]},
            True,
        ),
    ],
)
def test_evaluate(facts, rule, expected):
    assert evaluate(validate_rule(rule), facts) is expected


@pytest.mark.parametrize(
    "rule",
    [
        "level_at_least",
        {"kind": "astrology"},
        {"kind": "source_count", "source": "quest_completion"},
        {"kind": "all_of", "rules": []},
        {"kind": "any_of", "rules": [{"kind": "level_at_least"}]},
    ],
)
def test_malformed_rules_are_rejected(rule):
    with pytest.raises(ValidationError):
        validate_rule(rule)


def test_satisfied_returns_matching_keys(facts):
    rules = {
        "veteran": {"kind": "level_at_least", "level": 5},
        "legend": {"kind": "level_at_least", "level": 60},
    }
    assert satisfied(rules, facts) == {"veteran"}

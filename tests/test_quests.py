from datetime import date

import pytest

from skillforge.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from skillforge.ledger import ledger
from skillforge.projection.builder import get_player_status
from skillforge.quests.state_machine import (
    claim_event_key,
    claim_quest,
    complete_quest,
    offer_quest,
    start_quest,
)


def _run_to_completed(db, user_id, quest_key, today=None):
    instance = offer_quest(db, user_id, quest_key, today=today)
    start_quest(db, user_id, instance.id)
    return complete_quest(db, user_id, instance.id)


def test_full_lifecycle_grants_xp_once(db, make_user, config):
    user = make_user()
    instance = _run_to_completed(db, user.id, "daily_kata")
    assert instance.state == "completed"

    instance, result = claim_quest(db, user.id, instance.id, "claim-1", config)
    assert instance.state == "claimed"
    assert result.accepted
    assert instance.claim_sequence == result.sequence
    assert "first_quest" in result.unlocked_badges

    status = get_player_status(db, user.id, config)
    # 40 quest XP + 25 first_quest bonus
    assert status.xp == 65
    assert {s["skill"]: s["xp"] for s in status.skills} == {"python": 20}


def test_double_claim_is_a_noop(db, make_user, config):
    user = make_user()
    instance = _run_to_completed(db, user.id, "squash_null_pointer")
    claim_quest(db, user.id, instance.id, "claim-1", config)
    xp_after_first = get_player_status(db, user.id, config).xp

    again, result = claim_quest(db, user.id, instance.id, "claim-2", config)

    assert result is None
    assert again.state == "claimed"
    assert get_player_status(db, user.id, config).xp == xp_after_first
    claims = ledger.events_by_source(db, user.id, "quest_completion")
    assert [e.idempotency_key for e in claims] == [claim_event_key(instance.id)]


def test_claim_before_completion_is_rejected(db, make_user, config):
    user = make_user()
    instance = offer_quest(db, user.id, "daily_kata")
    start_quest(db, user.id, instance.id)
    with pytest.raises(InvalidTransitionError):
        claim_quest(db, user.id, instance.id, "early", config)
    assert ledger.last_sequence(db, user.id) == 0


def test_transitions_are_forward_only(db, make_user):
    user = make_user()
    instance = offer_quest(db, user.id, "daily_kata")
    with pytest.raises(InvalidTransitionError):
        complete_quest(db, user.id, instance.id)

    start_quest(db, user.id, instance.id)
    # repeating the current state is harmless
    assert start_quest(db, user.id, instance.id).state == "in_progress"

    complete_quest(db, user.id, instance.id)
    with pytest.raises(InvalidTransitionError):
        start_quest(db, user.id, instance.id)


def test_daily_quest_is_offered_once_per_day(db, make_user):
    user = make_user()
    monday = offer_quest(db, user.id, "daily_kata", today=date(2026, 10, 19))
    again = offer_quest(db, user.id, "daily_kata", today=date(2026, 10, 19))
    tuesday = offer_quest(db, user.id, "daily_kata", today=date(2026, 10, 20))

    assert again.id == monday.id
    assert tuesday.id != monday.id
    assert tuesday.period == "2026-10-20"


def test_main_quest_requires_its_prerequisite(db, make_user, config):
    user = make_user()
    with pytest.raises(ValidationError):
        offer_quest(db, user.id, "review_a_peer")

    first = _run_to_completed(db, user.id, "first_pull_request")
    claim_quest(db, user.id, first.id, "claim-pr", config)

    assert offer_quest(db, user.id, "review_a_peer").state == "offered"


def test_min_level_gates_offer(db, make_user):
    user = make_user()
    with pytest.raises(ValidationError):
        offer_quest(db, user.id, "squash_race_condition")


def test_unknown_quest_and_foreign_instance(db, make_user):
    ada = make_user("ada")
    bob = make_user("bob")
    with pytest.raises(NotFoundError):
        offer_quest(db, ada.id, "slay_the_dragon")

    instance = offer_quest(db, ada.id, "daily_kata")
    with pytest.raises(NotFoundError):
        start_quest(db, bob.id, instance.id)

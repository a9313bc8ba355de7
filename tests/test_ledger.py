import pytest

from skillforge.core.errors import ValidationError
from skillforge.db.base import SessionLocal
from skillforge.ledger import ledger
from skillforge.ledger.ledger import NewEvent
from skillforge.ledger.models import ProgressionEvent


def _exercise(user_id, key, xp=10):
    return NewEvent(
        idempotency_key=key,
        user_id=user_id,
        source="manual_exercise",
        payload={"skill_xp": {"python": xp}},
    )


def test_append_assigns_gapless_sequences(db, make_user):
    user = make_user()
    first = ledger.append(db, _exercise(user.id, "ex-1"))
    second = ledger.append(db, _exercise(user.id, "ex-2"))
    db.commit()

    assert first.accepted and second.accepted
    assert (first.sequence, second.sequence) == (1, 2)
    assert ledger.last_sequence(db, user.id) == 2


def test_duplicate_key_is_a_noop_returning_prior_entry(db, make_user):
    user = make_user()
    original = ledger.append(db, _exercise(user.id, "ex-1", xp=10))
    db.commit()

    again = ledger.append(db, _exercise(user.id, "ex-1", xp=999))
    db.commit()

    assert again.accepted is False
    assert again.sequence == original.sequence
    assert again.event.payload == {"skill_xp": {"python": 10}}
    assert db.query(ProgressionEvent).filter(ProgressionEvent.user_id == user.id).count() == 1


def test_sequences_are_per_user(db, make_user):
    ada = make_user("ada")
    bob = make_user("bob")
    ledger.append(db, _exercise(ada.id, "same-key"))
    db.commit()
    result = ledger.append(db, _exercise(bob.id, "same-key"))
    db.commit()

    assert result.accepted
    assert result.sequence == 1


def test_replay_returns_sequence_order_and_tail(db, make_user):
    user = make_user()
    for i in range(1, 5):
        ledger.append(db, _exercise(user.id, f"ex-{i}", xp=i))
        db.commit()

    assert [e.sequence for e in ledger.replay(db, user.id)] == [1, 2, 3, 4]
    assert [e.sequence for e in ledger.replay(db, user.id, after_sequence=2)] == [3, 4]


@pytest.mark.parametrize(
    "event",
    [
        NewEvent(idempotency_key="", user_id=1, source="manual_exercise", payload={}),
        NewEvent(idempotency_key="k", user_id=1, source="telepathy", payload={}),
        NewEvent(idempotency_key="k", user_id=1, source="manual_exercise", payload=[]),
        NewEvent(idempotency_key="k" * 256, user_id=1, source="manual_exercise", payload={}),
        NewEvent(idempotency_key="k", user_id=1, source="manual_exercise"),
    ],
)
def test_malformed_events_are_rejected(db, make_user, event):
    make_user()
    with pytest.raises(ValidationError):
        ledger.append(db, event)
    assert db.query(ProgressionEvent).count() == 0


def test_events_by_source_filters(db, make_user):
    user = make_user()
    ledger.append(db, _exercise(user.id, "ex-1"))
    ledger.append(
        db,
        NewEvent(
            idempotency_key="quest_claim:1",
            user_id=user.id,
            source="quest_completion",
            payload={"quest_key": "daily_kata", "tags": [], "skill_xp": {}},
        ),
    )
    db.commit()

    assert [e.source for e in ledger.events_by_source(db, user.id, "quest_completion")] == ["quest_completion"]


def test_payload_factory_is_rebuilt_after_losing_the_sequence_race(db, make_user):
    user = make_user()
    seen = []

    def payload_factory(session):
        seen.append(ledger.last_sequence(session, user.id))
        if len(seen) == 1:
            # another writer commits right after our sequence read
            other = SessionLocal()
            try:
                ledger.append(other, _exercise(user.id, "other-writer"))
                other.commit()
            finally:
                other.close()
        return {"skill_xp": {"python": 10 * len(seen)}}

    result = ledger.append(
        db,
        NewEvent(
            idempotency_key="late",
            user_id=user.id,
            source="manual_exercise",
            payload_factory=payload_factory,
        ),
    )
    db.commit()

    assert seen == [0, 1]
    assert result.accepted
    assert result.sequence == 2
    assert result.event.payload == {"skill_xp": {"python": 20}}
    assert [e.idempotency_key for e in ledger.replay(db, user.id)] == ["other-writer", "late"]

import threading

import pytest
from sqlalchemy.orm import sessionmaker

from skillforge.core import notifications
from skillforge.core.errors import NotFoundError, ValidationError
from skillforge.core.locks import user_lock
from skillforge.db.base import Base, make_engine
from skillforge.ledger import ledger
from skillforge.players.service import create_user
from skillforge.progression.ingest import normalize_payload, submit_event
from skillforge.projection.builder import get_player_status, load_cached_state, replay_state


def test_manual_exercise_normalization(config):
    out = normalize_payload("manual_exercise", {"skill": " Python ", "xp": 30, "skill_xp": {"PYTHON": 5}}, config)
    assert out == {"skill_xp": {"python": 35}}


def test_quest_completion_keeps_explicit_xp(config):
    out = normalize_payload(
        "quest_completion", {"quest_key": "Daily_Kata", "tags": ["Bug", "bug"], "xp": 40}, config
    )
    assert out == {"quest_key": "daily_kata", "tags": ["bug"], "xp": 40, "skill_xp": {}}


@pytest.mark.parametrize(
    "source, payload",
    [
        ("manual_exercise", {}),
        ("manual_exercise", {"skill": "python", "xp": "ten"}),
        ("manual_exercise", {"skill": "python", "xp": True}),
        ("quest_completion", {"tags": []}),
        ("github_analysis", {"estimate": {"python": 10}}),
        ("badge_trigger", {}),
        ("job_change", {"job_class": "wizard"}),
        ("job_change", {"job_class": "backend_engineer", "xp": 10}),
        ("telepathy", {}),
    ],
)
def test_bad_payloads(config, source, payload):
    with pytest.raises(ValidationError):
        normalize_payload(source, payload, config)


def test_unknown_user_is_404(db, config):
    with pytest.raises(NotFoundError):
        submit_event(db, "k", 404, "manual_exercise", {"skill": "python", "xp": 1}, config=config)


def test_notifications_go_out_after_commit(db, make_user, config):
    user = make_user()
    received = []

    def handler(kind, data):
        received.append((kind, data))

    notifications.subscribe(handler)
    try:
        submit_event(db, "big", user.id, "manual_exercise", {"skill": "python", "xp": 200}, config=config)
    finally:
        notifications.unsubscribe(handler)

    levels = [data["level"] for kind, data in received if kind == "level_up"]
    assert levels == [2, 3]


def test_failing_handler_does_not_break_ingestion(db, make_user, config):
    user = make_user()

    def broken(kind, data):
        raise RuntimeError("speaker unplugged")

    notifications.subscribe(broken)
    try:
        result = submit_event(db, "e", user.id, "manual_exercise", {"skill": "python", "xp": 60}, config=config)
    finally:
        notifications.unsubscribe(broken)
    assert result.accepted


def test_user_lock_is_reentrant():
    with user_lock(7):
        with user_lock(7):
            pass


def test_concurrent_submissions_for_one_user_get_gapless_sequences(tmp_path, config):
    # A file database so every worker session has its own connection
    file_engine = make_engine(f"sqlite:///{tmp_path / 'concurrent.db'}")
    Base.metadata.create_all(bind=file_engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)

    setup = Session()
    try:
        user_id = create_user(setup, "ada", config).id
    finally:
        setup.close()

    workers, per_worker = 8, 5
    errors = []

    def worker(n):
        session = Session()
        try:
            for j in range(per_worker):
                submit_event(
                    session, f"w{n}-{j}", user_id, "manual_exercise", {"skill": "python", "xp": 3}, config=config
                )
                # every worker also replays the same trigger
                submit_event(
                    session, "shared", user_id, "manual_exercise", {"skill": "go", "xp": 7}, config=config
                )
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    check = Session()
    try:
        assert errors == []
        events = ledger.replay(check, user_id)
        expected_count = workers * per_worker + 1
        assert [e.sequence for e in events] == list(range(1, expected_count + 1))
        keys = [e.idempotency_key for e in events]
        assert len(set(keys)) == len(keys) == expected_count

        status = get_player_status(check, user_id, config)
        assert status.xp == workers * per_worker * 3 + 7
        assert load_cached_state(check, user_id, config).to_json() == replay_state(check, user_id, config).to_json()
    finally:
        check.close()
        file_engine.dispose()

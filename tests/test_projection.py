from dataclasses import replace

import pytest

from skillforge.core.errors import InconsistentStateError, NotFoundError
from skillforge.players.models import SkillProgress, User
from skillforge.progression.ingest import change_job, submit_event
from skillforge.projection.builder import (
    get_player_status,
    load_cached_state,
    rebuild_projection,
    replay_state,
    verify_projection,
)
from skillforge.projection.models import PlayerStatusCache


def _exercise(db, user_id, key, skill, xp, config):
    return submit_event(db, key, user_id, "manual_exercise", {"skill": skill, "xp": xp}, config=config)


def _feed(db, user_id, config):
    _exercise(db, user_id, "e1", "python", 120, config)
    _exercise(db, user_id, "e2", "debugging", 90, config)
    submit_event(
        db, "q1", user_id, "quest_completion",
        {"quest_key": "fix_off_by_one", "tags": ["bug"], "xp": 80, "skill_xp": {"debugging": 40}},
        config=config,
    )
    _exercise(db, user_id, "e3", "css", 300, config)


def test_incremental_matches_full_replay_byte_for_byte(db, make_user, config):
    user = make_user()
    _feed(db, user.id, config)

    incremental = get_player_status(db, user.id, config)
    cached = load_cached_state(db, user.id, config)
    assert cached.to_json() == replay_state(db, user.id, config).to_json()

    rebuilt = rebuild_projection(db, user.id, config)
    assert incremental.to_json() == rebuilt.to_json()


def test_snapshot_derives_stats_and_equipment(db, make_user, config):
    user = make_user()
    _feed(db, user.id, config)
    status = get_player_status(db, user.id, config)

    # 120 + 90 + 80 + 25 (first_quest) + 300
    assert status.xp == 615
    assert status.level == 4
    assert status.hp == config.hp_base + 3 * config.hp_per_level
    assert status.unspent_stat_points == 3 * config.stat_points_per_level
    assert status.equipped_skills == ["css", "debugging", "python"]
    # css -> design, debugging -> debugging, python -> default coding
    assert status.stats["design"] > 0
    assert status.stats["debugging"] > 0
    assert status.stats["coding"] > 0
    assert status.stats["communication"] == 0

    row = db.query(User).filter(User.id == user.id).one()
    assert (row.level, row.total_xp, row.applied_sequence) == (4, 615, status.last_sequence)


def test_verify_passes_on_a_clean_projection(db, make_user, config):
    user = make_user()
    _feed(db, user.id, config)
    assert verify_projection(db, user.id, config).xp == 615


def test_verify_detects_tampered_aggregates_and_rebuilds(db, make_user, config):
    user = make_user()
    _feed(db, user.id, config)

    row = db.query(User).filter(User.id == user.id).one()
    row.total_xp = 999999
    db.query(SkillProgress).filter(SkillProgress.user_id == user.id, SkillProgress.skill == "css").one().xp = 1
    db.commit()

    with pytest.raises(InconsistentStateError) as exc_info:
        verify_projection(db, user.id, config)
    assert "total_xp" in exc_info.value.detail

    db.refresh(row)
    assert row.total_xp == 615
    assert verify_projection(db, user.id, config).xp == 615


def test_verify_detects_tampered_cache(db, make_user, config):
    user = make_user()
    _feed(db, user.id, config)

    cache = db.query(PlayerStatusCache).filter(PlayerStatusCache.user_id == user.id).one()
    state = load_cached_state(db, user.id, config)
    state.skill_xp["python"] += 500
    cache.state_json = state.to_json()
    db.commit()

    with pytest.raises(InconsistentStateError):
        verify_projection(db, user.id, config)
    assert load_cached_state(db, user.id, config).skill_xp["python"] == 120


def test_config_change_invalidates_cache(db, make_user, config):
    user = make_user()
    _feed(db, user.id, config)

    steeper = replace(config, level_thresholds=tuple(t * 2 for t in config.level_thresholds))
    assert load_cached_state(db, user.id, steeper).last_sequence == 0

    status = get_player_status(db, user.id, steeper)
    assert status.xp == 615
    assert status.level == 3


def test_job_change_keeps_all_skill_xp(db, make_user, config):
    user = make_user()
    gate_xp = config.level_thresholds[config.job_change_levels[0] - 1]
    _exercise(db, user.id, "grind", "python", gate_xp, config)
    before = get_player_status(db, user.id, config)
    assert before.job_change_eligible

    change_job(db, user.id, "backend_engineer", "job-1", config)
    after = get_player_status(db, user.id, config)

    assert after.job_class == "backend_engineer"
    assert after.skills == before.skills
    assert after.xp == before.xp
    assert after.job_change_eligible is False


def test_status_for_unknown_user(db, config):
    with pytest.raises(NotFoundError):
        get_player_status(db, 404, config)

import logging
from dataclasses import replace

import pytest

from skillforge.core.config import VotingConfig
from skillforge.core.errors import NotFoundError, ProposalClosedError, ValidationError
from skillforge.progression.ingest import submit_event
from skillforge.voting.aggregator import cast_vote, create_proposal
from skillforge.voting.models import Vote


@pytest.fixture
def small_config(config):
    return replace(config, voting=VotingConfig(adopt_threshold=2, reject_threshold=2, reputation_min_level=0))


@pytest.fixture
def voters(make_user):
    return [make_user(f"voter{i}") for i in range(4)]


@pytest.fixture
def proposal(db, voters):
    return create_proposal(db, voters[0].id, "Add a Rust roadmap", roadmap="Rust")


def test_second_vote_keeps_the_first(db, voters, proposal, small_config):
    first = cast_vote(db, voters[1].id, proposal.id, "yes", small_config)
    second = cast_vote(db, voters[1].id, proposal.id, "no", small_config)

    assert first.accepted is True
    assert second.accepted is False
    assert second.vote.id == first.vote.id
    assert second.vote.direction == "up"
    assert (second.proposal.yes_count, second.proposal.no_count) == (1, 0)
    assert db.query(Vote).filter(Vote.proposal_id == proposal.id).count() == 1


def test_adopted_at_threshold_then_closed(db, voters, proposal, small_config):
    cast_vote(db, voters[1].id, proposal.id, "up", small_config)
    result = cast_vote(db, voters[2].id, proposal.id, "up", small_config)

    assert result.proposal.state == "adopted"
    assert result.proposal.net == 2
    assert result.proposal.decided_at is not None

    with pytest.raises(ProposalClosedError):
        cast_vote(db, voters[3].id, proposal.id, "down", small_config)

    # a voter who already voted still gets their vote back
    assert cast_vote(db, voters[1].id, proposal.id, "down", small_config).accepted is False


def test_rejected_at_negative_threshold(db, voters, proposal, small_config):
    cast_vote(db, voters[1].id, proposal.id, "down", small_config)
    result = cast_vote(db, voters[2].id, proposal.id, "no", small_config)
    assert result.proposal.state == "rejected"
    assert result.proposal.net == -2


def test_tie_stays_pending_and_is_logged(db, voters, proposal, small_config, caplog):
    with caplog.at_level(logging.INFO, logger="skillforge.voting.aggregator"):
        cast_vote(db, voters[1].id, proposal.id, "up", small_config)
        result = cast_vote(db, voters[2].id, proposal.id, "down", small_config)

    assert result.proposal.state == "pending"
    assert result.proposal.net == 0
    assert "[VOTE-TIE]" in caplog.text


def test_votes_below_reputation_floor_are_recorded_not_tallied(db, voters, proposal, config):
    floor = replace(config, voting=VotingConfig(adopt_threshold=1, reject_threshold=1, reputation_min_level=2))

    low = cast_vote(db, voters[1].id, proposal.id, "up", floor)
    assert low.accepted
    assert low.vote.eligible is False
    assert low.proposal.state == "pending"
    assert low.proposal.yes_count == 0

    # 60 XP puts voter2 at level 2
    submit_event(db, "ex-1", voters[2].id, "manual_exercise", {"skill": "rust", "xp": 60}, config=config)
    high = cast_vote(db, voters[2].id, proposal.id, "up", floor)
    assert high.vote.eligible is True
    assert high.proposal.state == "adopted"
    assert high.proposal.yes_count == 1


def test_bad_direction_and_missing_proposal(db, voters, proposal, small_config):
    with pytest.raises(ValidationError):
        cast_vote(db, voters[1].id, proposal.id, "sideways", small_config)
    with pytest.raises(NotFoundError):
        cast_vote(db, voters[1].id, 9999, "up", small_config)


def test_proposal_needs_a_title(db, voters):
    with pytest.raises(ValidationError):
        create_proposal(db, voters[0].id, "   ")

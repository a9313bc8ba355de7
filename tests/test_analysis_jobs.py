import json
import threading
from dataclasses import replace

import pytest
import requests

from skillforge.assessment.jobs import cancel_job, create_job, run_analysis_job
from skillforge.assessment.scorer import ProfileSnapshot
from skillforge.assessment.source import HttpProfileSource, ProfileSource
from skillforge.core.config import AnalysisConfig
from skillforge.core.errors import ExternalServiceError
from skillforge.db.base import SessionLocal
from skillforge.ledger import ledger


@pytest.fixture
def job_config(config):
    return replace(
        config,
        analysis=AnalysisConfig(
            max_attempts=3, backoff_base_s=1.0, backoff_factor=2.0, backoff_max_s=30.0, attempt_timeout_s=5.0,
        ),
    )


@pytest.fixture
def sleeps():
    return []


def _snapshot(user_id, content_hash="h1"):
    return ProfileSnapshot.from_dict(
        {"user_id": user_id, "content_hash": content_hash, "commit_count": 50, "languages": {"python": 1}}
    )


def _reload(db, job):
    db.expire_all()
    db.refresh(job)
    return job


def test_job_succeeds_and_appends_once(db, make_user, profile_source, job_config, sleeps):
    user = make_user()
    job = create_job(db, user.id)
    profile_source.queue(_snapshot(user.id))

    status = run_analysis_job(job.id, profile_source, job_config, sleep=sleeps.append)

    job = _reload(db, job)
    assert status == "succeeded"
    assert (job.attempts, job.accepted, job.content_hash) == (1, True, "h1")
    assert job.sequence == ledger.events_by_source(db, user.id, "github_analysis")[0].sequence
    assert sleeps == []


def test_retryable_failures_back_off_exponentially(db, make_user, profile_source, job_config, sleeps):
    user = make_user()
    job = create_job(db, user.id)
    profile_source.queue(
        ExternalServiceError("HTTP 502"),
        ExternalServiceError("HTTP 503"),
        _snapshot(user.id),
    )

    status = run_analysis_job(job.id, profile_source, job_config, sleep=sleeps.append)

    job = _reload(db, job)
    assert status == "succeeded"
    assert job.attempts == 3
    assert sleeps == [1.0, 2.0]


def test_exhausted_retries_fail_without_writing(db, make_user, profile_source, job_config, sleeps):
    user = make_user()
    job = create_job(db, user.id)
    profile_source.queue(*[ExternalServiceError("down") for _ in range(3)])

    status = run_analysis_job(job.id, profile_source, job_config, sleep=sleeps.append)

    job = _reload(db, job)
    assert status == "failed"
    assert job.attempts == 3
    assert job.last_error == "down"
    assert sleeps == [1.0, 2.0]
    assert ledger.last_sequence(db, user.id) == 0


def test_non_retryable_error_fails_immediately(db, make_user, profile_source, job_config, sleeps):
    user = make_user()
    job = create_job(db, user.id)
    profile_source.queue(ExternalServiceError("HTTP 404", retryable=False))

    assert run_analysis_job(job.id, profile_source, job_config, sleep=sleeps.append) == "failed"
    assert _reload(db, job).attempts == 1
    assert sleeps == []


def test_snapshot_for_another_user_is_refused(db, make_user, profile_source, job_config, sleeps):
    user = make_user()
    job = create_job(db, user.id)
    profile_source.queue(_snapshot(user.id + 1))

    assert run_analysis_job(job.id, profile_source, job_config, sleep=sleeps.append) == "failed"
    assert ledger.last_sequence(db, user.id) == 0


def test_cancelled_before_start_never_fetches(db, make_user, profile_source, job_config, sleeps):
    user = make_user()
    job = create_job(db, user.id)
    cancel_job(db, job.id)

    assert run_analysis_job(job.id, profile_source, job_config, sleep=sleeps.append) == "cancelled"
    assert profile_source.calls == 0


def test_cancel_between_attempts_stops_the_job(db, make_user, profile_source, job_config):
    user = make_user()
    job = create_job(db, user.id)
    profile_source.queue(ExternalServiceError("flaky"), _snapshot(user.id))

    def cancel_while_waiting(delay):
        other = SessionLocal()
        try:
            cancel_job(other, job.id)
        finally:
            other.close()

    status = run_analysis_job(job.id, profile_source, job_config, sleep=cancel_while_waiting)

    assert status == "cancelled"
    assert profile_source.calls == 1
    assert ledger.last_sequence(db, user.id) == 0


def test_hung_fetch_times_out(db, make_user, job_config, sleeps):
    release = threading.Event()

    class HangingSource(ProfileSource):
        def fetch_profile_snapshot(self, user_id):
            release.wait(2.0)
            raise ExternalServiceError("too late")

    user = make_user()
    job = create_job(db, user.id)
    quick = replace(job_config, analysis=replace(job_config.analysis, max_attempts=1, attempt_timeout_s=0.05))

    try:
        status = run_analysis_job(job.id, HangingSource(), quick, sleep=sleeps.append)
    finally:
        release.set()

    assert status == "failed"
    assert "timed out" in _reload(db, job).last_error


def test_cancelling_a_finished_job_leaves_it_alone(db, make_user, profile_source, job_config, sleeps):
    user = make_user()
    job = create_job(db, user.id)
    profile_source.queue(_snapshot(user.id))
    run_analysis_job(job.id, profile_source, job_config, sleep=sleeps.append)

    assert cancel_job(db, job.id).status == "succeeded"


class _RedirectLoopSession:
    def get(self, url, timeout=None):
        raise requests.TooManyRedirects(f"exceeded redirects for {url}")


class _DropThenServeSession:
    """First request dies mid-body, the second one answers."""

    def __init__(self, body):
        self.body = body
        self.calls = 0

    def get(self, url, timeout=None):
        self.calls += 1
        if self.calls == 1:
            raise requests.exceptions.ChunkedEncodingError("connection broken: incomplete read")
        resp = requests.Response()
        resp.status_code = 200
        resp._content = json.dumps(self.body).encode()
        return resp


def test_redirect_loop_fails_the_job_without_retrying(db, make_user, job_config, sleeps):
    user = make_user()
    job = create_job(db, user.id)
    source = HttpProfileSource("http://profiles.local", session=_RedirectLoopSession())

    status = run_analysis_job(job.id, source, job_config, sleep=sleeps.append)

    job = _reload(db, job)
    assert status == job.status == "failed"
    assert job.attempts == 1
    assert "redirects" in job.last_error
    assert sleeps == []


def test_dropped_body_is_retried(db, make_user, job_config, sleeps):
    user = make_user()
    job = create_job(db, user.id)
    session = _DropThenServeSession(
        {"user_id": user.id, "content_hash": "h1", "commit_count": 50, "languages": {"python": 1}}
    )
    source = HttpProfileSource("http://profiles.local", session=session)

    status = run_analysis_job(job.id, source, job_config, sleep=sleeps.append)

    job = _reload(db, job)
    assert status == "succeeded"
    assert (job.attempts, session.calls) == (2, 2)
    assert sleeps == [1.0]


def test_unexpected_error_still_ends_the_job(db, make_user, job_config, sleeps):
    class BrokenSource(ProfileSource):
        def fetch_profile_snapshot(self, user_id):
            raise RuntimeError("decoder exploded")

    user = make_user()
    job = create_job(db, user.id)

    status = run_analysis_job(job.id, BrokenSource(), job_config, sleep=sleeps.append)

    job = _reload(db, job)
    assert status == job.status == "failed"
    assert job.last_error == "RuntimeError: decoder exploded"
    assert ledger.last_sequence(db, user.id) == 0

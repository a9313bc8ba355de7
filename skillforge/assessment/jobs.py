"""
Background profile-analysis jobs.

Core rules:
  - each fetch attempt is bounded by a timeout
  - retryable failures back off exponentially up to max_attempts
  - a job can be cancelled between attempts; a cancelled job never appends
  - nothing is appended until the whole snapshot has been fetched and scored
  - exhausted retries leave the job 'failed' with the last error, no state written
  - an unexpected error also ends the job as 'failed', never stuck 'running'
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Optional

from sqlalchemy.orm import Session

from skillforge.assessment.models import AnalysisJob
from skillforge.assessment.scorer import ProfileSnapshot, apply_snapshot
from skillforge.assessment.source import ProfileSource
from skillforge.core.config import ProgressionConfig, get_config
from skillforge.core.errors import ExternalServiceError, NotFoundError, ValidationError
from skillforge.db.base import SessionLocal
from skillforge.players.models import User

logger = logging.getLogger(__name__)


def create_job(db: Session, user_id: int) -> AnalysisJob:
    if not db.query(User).filter(User.id == user_id).first():
        raise NotFoundError(f"user {user_id} not found")
    job = AnalysisJob(user_id=user_id, status="pending", attempts=0)
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("[ANALYSIS] job=%s queued for user=%s", job.id, user_id)
    return job


def get_job(db: Session, job_id: int) -> AnalysisJob:
    job = db.query(AnalysisJob).filter(AnalysisJob.id == job_id).first()
    if not job:
        raise NotFoundError(f"analysis job {job_id} not found")
    return job


def cancel_job(db: Session, job_id: int) -> AnalysisJob:
    """Cancel a pending or running job. Finished jobs are returned unchanged."""
    job = get_job(db, job_id)
    if job.status in ("pending", "running"):
        job.status = "cancelled"
        db.commit()
        db.refresh(job)
        logger.info("[ANALYSIS] job=%s cancelled", job_id)
    return job


def fetch_with_timeout(source: ProfileSource, user_id: int, timeout_s: float) -> ProfileSnapshot:
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(source.fetch_profile_snapshot, user_id)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeout as exc:
        future.cancel()
        raise ExternalServiceError(f"profile fetch timed out after {timeout_s}s") from exc
    finally:
        # Do not wait on a hung fetch; its result is discarded
        executor.shutdown(wait=False)


def _finish(db: Session, job: AnalysisJob, status: str, error: Optional[str] = None) -> AnalysisJob:
    job.status = status
    if error is not None:
        job.last_error = error
    db.commit()
    db.refresh(job)
    return job


def _is_cancelled(db: Session, job: AnalysisJob) -> bool:
    db.refresh(job)
    return job.status == "cancelled"


def run_analysis_job(
    job_id: int,
    source: ProfileSource,
    config: Optional[ProgressionConfig] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Run one job to a terminal state. Returns the final status."""
    config = config or get_config()
    policy = config.analysis
    db = session_factory()
    try:
        job = get_job(db, job_id)
        for attempt in range(1, policy.max_attempts + 1):
            if _is_cancelled(db, job):
                logger.info("[ANALYSIS] job=%s cancelled before attempt %s", job_id, attempt)
                return job.status

            job.status = "running"
            job.attempts = attempt
            db.commit()

            try:
                snapshot = fetch_with_timeout(source, job.user_id, policy.attempt_timeout_s)
                if snapshot.user_id != job.user_id:
                    raise ExternalServiceError(
                        f"profile source returned user {snapshot.user_id} for user {job.user_id}",
                        retryable=False,
                    )
                snapshot.validate()
                if _is_cancelled(db, job):
                    logger.info("[ANALYSIS] job=%s cancelled, snapshot discarded", job_id)
                    return job.status

                result = apply_snapshot(db, snapshot, config)

            except ExternalServiceError as exc:
                if not exc.retryable or attempt == policy.max_attempts:
                    logger.error(
                        "[ANALYSIS] job=%s failed after %s attempt(s): %s", job_id, attempt, exc,
                    )
                    return _finish(db, job, "failed", str(exc)).status
                delay = policy.backoff_for(attempt)
                job.last_error = str(exc)
                db.commit()
                logger.warning(
                    "[ANALYSIS] job=%s attempt %s/%s failed (%s), retrying in %.1fs",
                    job_id, attempt, policy.max_attempts, exc, delay,
                )
                sleep(delay)
                continue

            except ValidationError as exc:
                logger.error("[ANALYSIS] job=%s rejected snapshot: %s", job_id, exc)
                return _finish(db, job, "failed", str(exc)).status

            except Exception as exc:
                # Whatever else went wrong, the job must not stay 'running'
                db.rollback()
                logger.exception("[ANALYSIS] job=%s crashed on attempt %s", job_id, attempt)
                return _finish(db, job, "failed", f"{type(exc).__name__}: {exc}").status

            job.content_hash = snapshot.content_hash.strip()
            job.sequence = result.sequence
            job.accepted = result.accepted
            return _finish(db, job, "succeeded").status

        return job.status
    finally:
        db.close()

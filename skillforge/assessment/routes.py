"""
Profile analysis routes.

Direct path: the caller already holds a normalized snapshot and posts it.
Job path: the engine fetches the snapshot itself in a background task,
with timeout, backoff and cancellation.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from skillforge.api.deps import get_progression_config, http_error
from skillforge.assessment.jobs import cancel_job, create_job, get_job, run_analysis_job
from skillforge.assessment.scorer import ProfileSnapshot, apply_snapshot, score_snapshot
from skillforge.assessment.source import ProfileSource, get_profile_source
from skillforge.core.config import ProgressionConfig
from skillforge.core.errors import ProgressionError
from skillforge.db.session import get_db

router = APIRouter(tags=["analysis"])


class SnapshotBody(BaseModel):
    content_hash: str
    commit_count: int = 0
    languages: dict = Field(default_factory=dict)
    pr_count: int = 0
    review_count: int = 0
    star_count: int = 0
    fork_count: int = 0
    resolved_issues: int = 0


def require_profile_source() -> ProfileSource:
    """Route dependency; tests override it with an in-memory source."""
    try:
        return get_profile_source()
    except ProgressionError as e:
        raise http_error(e) from e


def _snapshot(user_id: int, body: SnapshotBody) -> ProfileSnapshot:
    data = body.model_dump()
    data["user_id"] = user_id
    return ProfileSnapshot.from_dict(data)


@router.post("/players/{user_id}/analysis")
def submit_analysis(
    user_id: int,
    body: SnapshotBody,
    db: Session = Depends(get_db),
    config: ProgressionConfig = Depends(get_progression_config),
):
    try:
        snapshot = _snapshot(user_id, body)
        result = apply_snapshot(db, snapshot, config)
        assessment = score_snapshot(snapshot, config)
    except ProgressionError as e:
        raise http_error(e) from e
    return {
        "result": result.to_dict(),
        "estimate": assessment.estimate,
        "confidence": assessment.confidence,
        "skip_test": assessment.skip_test,
    }


@router.post("/players/{user_id}/analysis/jobs", status_code=202)
def start_analysis_job(
    user_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    source: ProfileSource = Depends(require_profile_source),
    config: ProgressionConfig = Depends(get_progression_config),
):
    try:
        job = create_job(db, user_id)
    except ProgressionError as e:
        raise http_error(e) from e
    background_tasks.add_task(run_analysis_job, job.id, source, config)
    return job.to_dict()


@router.get("/analysis/jobs/{job_id}")
def analysis_job_status(job_id: int, db: Session = Depends(get_db)):
    try:
        return get_job(db, job_id).to_dict()
    except ProgressionError as e:
        raise http_error(e) from e


@router.post("/analysis/jobs/{job_id}/cancel")
def cancel_analysis_job(job_id: int, db: Session = Depends(get_db)):
    try:
        job = cancel_job(db, job_id)
    except ProgressionError as e:
        raise http_error(e) from e
    if job.status != "cancelled":
        raise HTTPException(status_code=409, detail=f"job {job_id} already {job.status}")
    return job.to_dict()

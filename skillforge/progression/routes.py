"""
Ingestion endpoint: every external progression signal enters here.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from skillforge.api.deps import get_progression_config, http_error
from skillforge.core.config import ProgressionConfig
from skillforge.core.errors import ProgressionError
from skillforge.db.session import get_db
from skillforge.progression.ingest import submit_event

router = APIRouter(tags=["events"])


class EventSubmission(BaseModel):
    idempotency_key: str
    user_id: int
    source: str
    payload: dict = Field(default_factory=dict)
    occurred_at: Optional[datetime] = None


@router.post("/events")
def post_event(
    body: EventSubmission,
    db: Session = Depends(get_db),
    config: ProgressionConfig = Depends(get_progression_config),
):
    """
    Submit one signal. A replayed idempotency key answers 200 with
    accepted=false and the original sequence; it is not an error.
    """
    try:
        result = submit_event(
            db,
            idempotency_key=body.idempotency_key,
            user_id=body.user_id,
            source=body.source,
            payload=body.payload,
            occurred_at=body.occurred_at,
            config=config,
        )
    except ProgressionError as e:
        raise http_error(e) from e
    return result.to_dict()

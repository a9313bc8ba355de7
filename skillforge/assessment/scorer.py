"""
Assessment Scorer: initial placement from a code-hosting profile snapshot.

Core rules:
  - activity XP = weighted sum of the snapshot counters
  - each language gets its histogram share of activity XP; reviews feed
    code_review, resolved issues feed debugging
  - every estimate is discounted by a fixed factor so players start a bit
    below their real level
  - a skill skips its placement test when confidence >= threshold
  - the event key is github_analysis:<content_hash>, so an unchanged snapshot
    is a duplicate; a changed one only carries max(0, new - last applied)
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from skillforge.core.config import AssessmentConfig, ProgressionConfig, get_config
from skillforge.core.errors import ValidationError
from skillforge.ledger import ledger
from skillforge.ledger.ledger import NewEvent
from skillforge.progression import ingest

logger = logging.getLogger(__name__)

_COUNTERS = ("commit_count", "pr_count", "review_count", "star_count", "fork_count", "resolved_issues")
# Fits analysis_jobs.content_hash and keeps the ledger key under 255
MAX_CONTENT_HASH = 128


@dataclass
class ProfileSnapshot:
    """Normalized profile as handed over by the external profile collaborator."""
    user_id: int
    content_hash: str
    commit_count: int = 0
    languages: dict = field(default_factory=dict)
    pr_count: int = 0
    review_count: int = 0
    star_count: int = 0
    fork_count: int = 0
    resolved_issues: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "ProfileSnapshot":
        if not isinstance(data, dict):
            raise ValidationError("profile snapshot must be an object")
        known = {k: data[k] for k in ("user_id", "content_hash", "languages", *_COUNTERS) if k in data}
        try:
            snapshot = cls(**known)
        except TypeError as exc:
            raise ValidationError(f"malformed profile snapshot: {exc}") from exc
        snapshot.validate()
        return snapshot

    def validate(self) -> None:
        if not self.user_id:
            raise ValidationError("snapshot is missing user_id")
        if not isinstance(self.content_hash, str) or not self.content_hash.strip():
            raise ValidationError("snapshot is missing content_hash")
        if len(self.content_hash.strip()) > MAX_CONTENT_HASH:
            raise ValidationError(f"snapshot content_hash longer than {MAX_CONTENT_HASH} characters")
        for name in _COUNTERS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"snapshot {name} must be a non-negative integer")
        if not isinstance(self.languages, dict):
            raise ValidationError("snapshot languages must be an object of name -> count")
        for name, count in self.languages.items():
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("snapshot language names must be non-empty strings")
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise ValidationError(f"snapshot language {name!r} count must be a non-negative integer")


@dataclass
class Assessment:
    estimate: dict
    confidence: dict
    skip_test: list


def _activity_xp(snapshot: ProfileSnapshot, cfg: AssessmentConfig) -> float:
    return (
        snapshot.commit_count * cfg.weight("commit")
        + snapshot.pr_count * cfg.weight("pr")
        + snapshot.review_count * cfg.weight("review")
        + snapshot.star_count * cfg.weight("star")
        + snapshot.fork_count * cfg.weight("fork")
        + snapshot.resolved_issues * cfg.weight("resolved_issue")
    )


def score_snapshot(snapshot: ProfileSnapshot, config: ProgressionConfig) -> Assessment:
    """Raw skill-XP estimate -> discounted estimate, confidence and skip flags."""
    cfg = config.assessment
    snapshot.validate()

    languages: dict = {}
    for name, count in snapshot.languages.items():
        key = name.strip().lower()
        languages[key] = languages.get(key, 0) + count
    total = sum(languages.values())

    activity = _activity_xp(snapshot, cfg)
    volume = min(1.0, snapshot.commit_count / cfg.full_confidence_commits) if cfg.full_confidence_commits else 1.0

    raw: dict = {}
    confidence: dict = {}
    for name, count in languages.items():
        if total == 0 or count == 0:
            continue
        share = count / total
        raw[name] = share * activity
        confidence[name] = share * volume

    if snapshot.review_count:
        raw["code_review"] = raw.get("code_review", 0) + snapshot.review_count * cfg.weight("review")
        confidence["code_review"] = min(1.0, snapshot.review_count / cfg.full_confidence_count)
    if snapshot.resolved_issues:
        raw["debugging"] = raw.get("debugging", 0) + snapshot.resolved_issues * cfg.weight("resolved_issue")
        confidence["debugging"] = min(1.0, snapshot.resolved_issues / cfg.full_confidence_count)

    estimate = {skill: int(math.floor(value * cfg.discount_factor)) for skill, value in raw.items()}
    estimate = {skill: xp for skill, xp in estimate.items() if xp > 0}
    confidence = {skill: round(confidence[skill], 4) for skill in estimate}
    skip_test = sorted(s for s, c in confidence.items() if c >= cfg.confidence_threshold)
    return Assessment(estimate=estimate, confidence=confidence, skip_test=skip_test)


def analysis_key(content_hash: str) -> str:
    return f"github_analysis:{content_hash.strip()}"


def last_applied_estimate(db: Session, user_id: int) -> dict:
    """Highest estimate per skill over every analysis already in the ledger."""
    applied: dict = {}
    for event in ledger.events_by_source(db, user_id, "github_analysis"):
        for skill, value in (event.payload.get("estimate") or {}).items():
            applied[skill] = max(applied.get(skill, 0), int(value))
    return applied


def build_analysis_payload(db: Session, snapshot: ProfileSnapshot, config: ProgressionConfig) -> dict:
    assessment = score_snapshot(snapshot, config)
    applied = last_applied_estimate(db, snapshot.user_id)
    deltas = {
        skill: max(0, value - applied.get(skill, 0))
        for skill, value in assessment.estimate.items()
    }
    return {
        "content_hash": snapshot.content_hash.strip(),
        "estimate": assessment.estimate,
        "skip_test": assessment.skip_test,
        "skill_xp": {skill: delta for skill, delta in deltas.items() if delta > 0},
    }


def apply_snapshot(
    db: Session, snapshot: ProfileSnapshot, config: Optional[ProgressionConfig] = None
) -> ingest.SubmitResult:
    """Score a snapshot and push the result through the ingestion boundary."""
    config = config or get_config()
    snapshot.validate()
    key = analysis_key(snapshot.content_hash)
    built = []

    def payload_factory(session: Session) -> dict:
        # Deltas depend on what is already applied, so the ledger builds the
        # payload against the exact tail it appends after.
        payload = ingest.normalize_payload("github_analysis", build_analysis_payload(session, snapshot, config), config)
        built.append(payload)
        return payload

    result = ingest.submit(
        db,
        NewEvent(
            idempotency_key=key,
            user_id=snapshot.user_id,
            source="github_analysis",
            payload_factory=payload_factory,
        ),
        config,
    )
    logger.info(
        "[ANALYSIS] user=%s hash=%s accepted=%s xp_delta=%s rescored=%s",
        snapshot.user_id, snapshot.content_hash, result.accepted,
        sum(built[-1]["skill_xp"].values()) if result.accepted else 0,
        max(0, len(built) - 1),
    )
    return result

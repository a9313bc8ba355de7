import logging
import os

from fastapi import FastAPI

from skillforge.core.config import LOG_LEVEL, get_config
from skillforge.db.base import Base, SessionLocal, engine, log_db_diagnostics

# Import models so create_all picks them up
from skillforge.players.models import User, SkillProgress  # noqa: F401
from skillforge.ledger.models import ProgressionEvent  # noqa: F401
from skillforge.projection.models import PlayerStatusCache  # noqa: F401
from skillforge.quests.models import Quest, QuestInstance  # noqa: F401
from skillforge.badges.models import Badge, BadgeAward  # noqa: F401
from skillforge.assessment.models import AnalysisJob  # noqa: F401
from skillforge.voting.models import RoadmapProposal, Vote  # noqa: F401

from skillforge.catalog.seed import load_catalog, seed_catalog
from skillforge.players.routes import router as players_router
from skillforge.progression.routes import router as events_router
from skillforge.assessment.routes import router as analysis_router
from skillforge.quests.routes import router as quests_router
from skillforge.voting.routes import router as voting_router


def _configure_logging() -> None:
    root = logging.getLogger("skillforge")
    root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)


_configure_logging()
logger = logging.getLogger("skillforge.main")

app = FastAPI(title="SkillForge", version="0.1.0")

# Create database tables (still useful in dev; in production prefer Alembic)
Base.metadata.create_all(bind=engine)
log_db_diagnostics()

_config = get_config()
logger.info("[CONFIG] progression config fingerprint=%s levels=%s", _config.fingerprint, len(_config.level_thresholds))

# Seed the default quest/badge catalog unless disabled
if os.getenv("SEED_CATALOG_ON_STARTUP", "1") == "1":
    _db = SessionLocal()
    try:
        seed_catalog(_db, load_catalog())
    finally:
        _db.close()

app.include_router(players_router)
app.include_router(events_router)
app.include_router(analysis_router)
app.include_router(quests_router)
app.include_router(voting_router)


@app.get("/")
def root():
    return {"service": "skillforge", "status": "ok", "config": _config.fingerprint}

"""
Seed script: upsert the quest and badge catalog.

Usage:
    python scripts/seed_catalog.py                 # bundled default catalog
    python scripts/seed_catalog.py path/to/catalog.json

Templates are matched by key; existing rows are updated, nothing is deleted.
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from skillforge.db.base import Base, SessionLocal, engine
from skillforge.badges.models import Badge, BadgeAward  # noqa: F401
from skillforge.quests.models import Quest, QuestInstance  # noqa: F401
from skillforge.catalog.seed import load_catalog, seed_catalog


def main(path=None):
    Base.metadata.create_all(bind=engine, tables=[Quest.__table__, Badge.__table__])
    catalog = load_catalog(path)
    db = SessionLocal()
    try:
        n_quests, n_badges = seed_catalog(db, catalog)
        print(f"Seeded {n_quests} quests and {n_badges} badges", flush=True)
    except Exception as e:
        db.rollback()
        print(f"Error while seeding catalog: {e}", flush=True)
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else None)

"""
Maintenance script: rebuild player projections from the ledger.

Usage:
    python scripts/rebuild_projections.py            # every user
    python scripts/rebuild_projections.py 12 40      # only these user ids
    python scripts/rebuild_projections.py --verify   # check first, rebuild only on drift

Run after changing the progression config: cached state is tied to the
config fingerprint, and the stored aggregates should follow the new tables.
"""
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from skillforge.db.base import SessionLocal
from skillforge.core.config import get_config
from skillforge.core.errors import InconsistentStateError
from skillforge.players.models import User
from skillforge.projection.builder import rebuild_projection, verify_projection


def rebuild(user_ids=None, verify_only=False):
    config = get_config()
    db = SessionLocal()
    rebuilt = 0
    drifted = 0
    try:
        q = db.query(User.id).order_by(User.id.asc())
        if user_ids:
            q = q.filter(User.id.in_(user_ids))
        ids = [row[0] for row in q.all()]
        print(f"Found {len(ids)} users (config {config.fingerprint})", flush=True)

        for user_id in ids:
            if verify_only:
                try:
                    verify_projection(db, user_id, config)
                except InconsistentStateError as e:
                    # verify_projection has already rebuilt this user
                    drifted += 1
                    print(f"  user {user_id}: {e.detail}", flush=True)
                continue
            snapshot = rebuild_projection(db, user_id, config)
            rebuilt += 1
            print(f"  user {user_id}: level={snapshot.level} xp={snapshot.xp} seq={snapshot.last_sequence}", flush=True)

        if verify_only:
            print(f"\nVerified {len(ids)} users, {drifted} rebuilt after drift", flush=True)
        else:
            print(f"\nRebuilt {rebuilt} users", flush=True)
    except Exception as e:
        db.rollback()
        print(f"Error during rebuild: {e}", flush=True)
        raise
    finally:
        db.close()


if __name__ == "__main__":
    args = sys.argv[1:]
    verify = "--verify" in args
    ids = [int(a) for a in args if a != "--verify"]
    rebuild(ids or None, verify_only=verify)

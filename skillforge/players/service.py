from sqlalchemy.orm import Session

from skillforge.core.config import ProgressionConfig
from skillforge.core.errors import NotFoundError, ValidationError
from skillforge.leveling.state import ProgressionState
from skillforge.players.models import User
from skillforge.projection.builder import save_state


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f"user {user_id} not found")
    return user


def create_user(db: Session, username: str, config: ProgressionConfig) -> User:
    """Register a player; aggregates start as the fold of an empty ledger."""
    name = (username or "").strip()
    if not name:
        raise ValidationError("username is required")
    if db.query(User).filter(User.username == name).first():
        raise ValidationError(f"username '{name}' is already taken")

    user = User(username=name, job_class=config.default_job_class)
    db.add(user)
    db.flush()
    save_state(db, user.id, ProgressionState(), config)
    db.commit()
    db.refresh(user)
    return user

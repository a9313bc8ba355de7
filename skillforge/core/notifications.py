"""
In-process notification bus.

LevelUp, hidden-skill and badge notifications are published here after the
ledger transaction commits. Animation, sound and delivery live elsewhere;
they subscribe a handler and take it from there.
"""
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict], None]

_handlers: list[Handler] = []
_lock = threading.Lock()


def subscribe(handler: Handler) -> None:
    with _lock:
        if handler not in _handlers:
            _handlers.append(handler)


def unsubscribe(handler: Handler) -> None:
    with _lock:
        if handler in _handlers:
            _handlers.remove(handler)


def publish(kind: str, data: dict) -> None:
    """Fan out to subscribers. A failing handler never breaks ingestion."""
    with _lock:
        handlers = list(_handlers)
    logger.debug("[NOTIFY] %s %s", kind, data)
    for handler in handlers:
        try:
            handler(kind, data)
        except Exception:
            logger.exception("[NOTIFY] handler %r failed for %s", handler, kind)

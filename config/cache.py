import fnmatch
import time
import threading

from sqlalchemy import event
from sqlalchemy.orm import Session

from config.settings import CACHE_TTL_SECONDS

# Global cache store
custom_cache = {}
CACHE_TTL = CACHE_TTL_SECONDS  # seconds
cache_lock = threading.Lock()


def get_cache(key: str):
    with cache_lock:
        item = custom_cache.get(key)
        if item:
            value, timestamp = item
            if time.time() - timestamp < CACHE_TTL:
                return value
            else:
                del custom_cache[key]
    return None


def set_cache(key: str, value):
    with cache_lock:
        custom_cache[key] = (value, time.time())


def delete_cache(key: str) -> bool:
    with cache_lock:
        return custom_cache.pop(key, None) is not None


def delete_cache_by_pattern(pattern: str) -> int:
    """Delete every key matching a glob pattern such as "appointments:*"."""
    with cache_lock:
        keys = [key for key in custom_cache if fnmatch.fnmatchcase(key, pattern)]
        for key in keys:
            del custom_cache[key]
    return len(keys)


def clear_cache():
    with cache_lock:
        custom_cache.clear()


# ------------- Invalidation tied to a DB transaction -------------
PENDING_INVALIDATIONS = "pending_cache_invalidations"


def invalidate_after_commit(db: Session, *patterns: str):
    """
    Drop the given keys or glob patterns once db commits. A rollback
    discards them, so readers never cache state that was not committed.
    """
    db.info.setdefault(PENDING_INVALIDATIONS, set()).update(patterns)


@event.listens_for(Session, "after_commit")
def _apply_pending_invalidations(session):
    for pattern in session.info.pop(PENDING_INVALIDATIONS, ()):
        delete_cache_by_pattern(pattern)


@event.listens_for(Session, "after_rollback")
def _discard_pending_invalidations(session):
    session.info.pop(PENDING_INVALIDATIONS, None)

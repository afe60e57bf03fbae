"""Per-script write locks.

Every operation that writes a script version or opens an approval request
runs inside ``lock_service.hold``. Taking the lock is a guarded insert on the
``script_locks`` primary key, so two writers never interleave on one script:
the second one gets a Conflict. Locks older than
``SCRIPT_LOCK_TIMEOUT_SECONDS`` are treated as abandoned and broken.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scriptgov.core.config import settings
from scriptgov.core.exceptions import ResourceConflictError
from scriptgov.db.base import utcnow
from scriptgov.models.script_lock import ScriptLock

logger = logging.getLogger("script_governance")

# Session.info key listing the scripts this session already holds
HELD_KEY = "script_locks"


class LockService:
    """Acquire and release script write locks."""

    @staticmethod
    def acquire(db: Session, script_id: str, holder: str) -> str:
        """Take the lock and return its token.

        Raises:
            ResourceConflictError: another writer holds the lock.
        """
        now = utcnow()
        expired_before = now - timedelta(seconds=settings.SCRIPT_LOCK_TIMEOUT_SECONDS)
        broken = (
            db.query(ScriptLock)
            .filter(ScriptLock.script_id == script_id, ScriptLock.acquired_at < expired_before)
            .delete(synchronize_session=False)
        )
        if broken:
            logger.warning("Broke abandoned write lock on %s", script_id)

        token = uuid.uuid4().hex
        db.add(ScriptLock(script_id=script_id, token=token, holder=holder, acquired_at=now))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("Write lock on %s busy; %s refused", script_id, holder)
            raise ResourceConflictError(
                f"Script '{script_id}' is being changed by another request; refresh and retry"
            )
        return token

    @staticmethod
    def release(db: Session, script_id: str, token: str) -> None:
        (
            db.query(ScriptLock)
            .filter(ScriptLock.script_id == script_id, ScriptLock.token == token)
            .delete(synchronize_session=False)
        )
        db.commit()

    @staticmethod
    @contextmanager
    def hold(db: Session, script_id: str, holder: str) -> Iterator[None]:
        """Hold the write lock on ``script_id`` for the body.

        Re-entrant within one session, so a locked operation may call another.
        """
        held = db.info.setdefault(HELD_KEY, set())
        if script_id in held:
            yield
            return

        token = LockService.acquire(db, script_id, holder)
        held.add(script_id)
        try:
            yield
        except Exception:
            db.rollback()
            raise
        finally:
            held.discard(script_id)
            LockService.release(db, script_id, token)


lock_service = LockService()

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

END_SIGNED_OUT = "signed_out"
END_IDLE = "idle"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite возвращает naive datetime даже для timezone=True
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class IdleGuard:
    """
    Debounced inactivity watchdog.

    Armed on construction. ``touch()`` records activity and rearms it;
    ``check()`` fires ``on_idle`` once when no activity arrived within
    ``timeout``. A fired guard stays fired.
    """

    def __init__(
        self,
        timeout: timedelta,
        on_idle: Optional[Callable[[], None]] = None,
        clock: Callable[[], datetime] = utcnow,
        last_activity: Optional[datetime] = None,
    ):
        self.timeout = timeout
        self.on_idle = on_idle
        self.clock = clock
        self.last_activity = as_utc(last_activity) if last_activity else clock()
        self.fired = False

    @property
    def deadline(self) -> datetime:
        return self.last_activity + self.timeout

    def touch(self) -> None:
        if self.fired:
            return
        self.last_activity = self.clock()

    def check(self) -> bool:
        """Return True if the guard has fired (now or earlier)."""
        if self.fired:
            return True
        if self.clock() >= self.deadline:
            self.fired = True
            if self.on_idle is not None:
                self.on_idle()
        return self.fired


# ---------- Сессии сотрудников ----------

def start_session(db: Session, staff: models.StaffUser) -> models.StaffSession:
    session = models.StaffSession(staff_id=staff.id)
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info("Staff %s signed in (session %s)", staff.email, session.id)
    return session


def end_session(db: Session, session: models.StaffSession, reason: str = END_SIGNED_OUT) -> None:
    if session.ended_at is not None:
        return
    session.ended_at = utcnow()
    session.end_reason = reason
    db.commit()
    if reason == END_IDLE:
        logger.warning("Session %s signed out after inactivity", session.id)
    else:
        logger.info("Session %s signed out", session.id)


def touch_session(
    db: Session,
    session: models.StaffSession,
    timeout: timedelta,
    clock: Callable[[], datetime] = utcnow,
) -> bool:
    """
    Register activity on a stored session.

    Returns False and ends the session with reason ``idle`` when it has been
    inactive for ``timeout``; otherwise moves ``last_seen_at`` forward.
    """
    guard = IdleGuard(
        timeout,
        on_idle=lambda: end_session(db, session, END_IDLE),
        clock=clock,
        last_activity=session.last_seen_at,
    )
    if guard.check():
        return False
    guard.touch()
    session.last_seen_at = guard.last_activity
    db.commit()
    return True

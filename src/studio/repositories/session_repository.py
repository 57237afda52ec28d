"""Persistence layer for per-session heavy job counters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.db_models import SessionModel
from ..exceptions import handle_sqlalchemy_errors
from .base import SessionScopedRepository


@dataclass(slots=True)
class SessionCounter:
    session_id: str
    user_id: str
    heavy_jobs_this_hour: int
    last_heavy_job_at: datetime | None


def _window_count(model: SessionModel | None, *, now: datetime, window: timedelta) -> int:
    if model is None or model.last_heavy_job_at is None:
        return 0
    if model.last_heavy_job_at < now - window:
        return 0
    return model.heavy_jobs_this_hour


class SessionRepository(SessionScopedRepository):
    """Manage rate-limit counters keyed by ``(user_id, session_id)``."""

    def get_counter(self, session_id: str, user_id: str) -> SessionCounter | None:
        with self._session_factory() as session:
            model = self._load(session, session_id, user_id)
            if model is None:
                return None
            return SessionCounter(
                session_id=model.id,
                user_id=model.user_id,
                heavy_jobs_this_hour=model.heavy_jobs_this_hour,
                last_heavy_job_at=model.last_heavy_job_at,
            )

    def heavy_jobs_in_window(
        self,
        session_id: str,
        user_id: str,
        *,
        now: datetime,
        window: timedelta,
    ) -> int:
        with self._session_factory() as session:
            model = self._load(session, session_id, user_id)
            return _window_count(model, now=now, window=window)

    def try_record_heavy_job(
        self,
        session_id: str,
        user_id: str,
        *,
        now: datetime,
        window: timedelta,
        limit: int,
        session: Session | None = None,
    ) -> bool:
        """Increment the counter unless ``limit`` is already reached.

        The row is locked for update so concurrent creations for the same
        session serialise on it.
        """
        with handle_sqlalchemy_errors(entity="session"), self._scope(session) as db:
            model = self._load(db, session_id, user_id, for_update=True)
            if model is None:
                model = SessionModel(id=session_id, user_id=user_id, heavy_jobs_this_hour=0)
                db.add(model)
                db.flush()
            current = _window_count(model, now=now, window=window)
            if current >= limit:
                return False
            model.heavy_jobs_this_hour = current + 1
            model.last_heavy_job_at = now
            db.flush()
            return True

    @staticmethod
    def _load(
        session: Session,
        session_id: str,
        user_id: str,
        *,
        for_update: bool = False,
    ) -> SessionModel | None:
        stmt = select(SessionModel).where(
            SessionModel.id == session_id,
            SessionModel.user_id == user_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return session.execute(stmt).scalar_one_or_none()

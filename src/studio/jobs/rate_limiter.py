"""Hourly ceiling on heavy generations per session."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..db.db_models import utcnow
from ..repositories.session_repository import SessionRepository
from .jobs_errors import RateLimitExceededError

DEFAULT_WINDOW = timedelta(hours=1)


@dataclass(slots=True)
class HeavyJobRateLimiter:
    """Allow at most ``limit`` heavy jobs per session in a rolling window.

    ``check`` is an early read used to reject requests before any write;
    ``record`` re-checks and increments inside the creation transaction.
    """

    session_repo: SessionRepository
    limit: int = 5
    window: timedelta = DEFAULT_WINDOW
    clock: Callable[[], datetime] = field(default=utcnow)

    def remaining(self, session_id: str, user_id: str) -> int:
        used = self.session_repo.heavy_jobs_in_window(
            session_id, user_id, now=self.clock(), window=self.window
        )
        return max(0, self.limit - used)

    def check(self, session_id: str, user_id: str) -> None:
        if self.remaining(session_id, user_id) <= 0:
            raise self._exceeded()

    def record(self, session_id: str, user_id: str, *, session: Session) -> None:
        allowed = self.session_repo.try_record_heavy_job(
            session_id,
            user_id,
            now=self.clock(),
            window=self.window,
            limit=self.limit,
            session=session,
        )
        if not allowed:
            raise self._exceeded()

    def _exceeded(self) -> RateLimitExceededError:
        return RateLimitExceededError(
            f"Rate limit exceeded: max {self.limit} heavy jobs per hour",
            limit=self.limit,
        )

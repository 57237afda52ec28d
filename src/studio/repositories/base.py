"""Shared session handling for repositories."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session


class SessionScopedRepository:
    """Base class for repositories that can join a caller's transaction.

    Write methods accept an optional ``session``. When it is given the
    statement runs inside the caller's unit of work and nothing is committed
    here; otherwise the repository opens and commits its own session.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _scope(self, session: Session | None = None) -> Iterator[Session]:
        if session is not None:
            yield session
            return
        with self._session_factory() as own:
            try:
                yield own
                own.commit()
            except Exception:
                own.rollback()
                raise

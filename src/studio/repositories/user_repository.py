"""Persistence layer for users and their credit balance."""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..db.db_models import UserModel
from ..exceptions import NotFoundError, handle_sqlalchemy_errors
from .base import SessionScopedRepository


class UserRepository(SessionScopedRepository):
    """Credit ledger backed by the ``users`` table.

    Balance changes are single conditional ``UPDATE`` statements so the
    check and the write happen atomically in the database.
    """

    def ensure_user(
        self,
        user_id: str,
        *,
        default_credits: int = 20,
        session: Session | None = None,
    ) -> int:
        """Create the user on first reference and return its balance."""
        with handle_sqlalchemy_errors(entity="user"), self._scope(session) as db:
            model = db.get(UserModel, user_id)
            if model is None:
                model = UserModel(
                    id=user_id,
                    username=user_id,
                    password="",
                    credits=default_credits,
                )
                db.add(model)
                db.flush()
            return model.credits

    def get_credits(self, user_id: str) -> int:
        with self._session_factory() as session:
            model = session.get(UserModel, user_id)
            if model is None:
                raise NotFoundError(f"User '{user_id}' not found")
            return model.credits

    def try_debit(self, user_id: str, amount: int, *, session: Session | None = None) -> bool:
        """Deduct ``amount`` only if the balance covers it."""
        with handle_sqlalchemy_errors(entity="user"), self._scope(session) as db:
            result = db.execute(
                update(UserModel)
                .where(UserModel.id == user_id, UserModel.credits >= amount)
                .values(credits=UserModel.credits - amount)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def credit(self, user_id: str, amount: int, *, session: Session | None = None) -> None:
        """Add ``amount`` to the balance (refunds and admin grants)."""
        with handle_sqlalchemy_errors(entity="user"), self._scope(session) as db:
            result = db.execute(
                update(UserModel)
                .where(UserModel.id == user_id)
                .values(credits=UserModel.credits + amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFoundError(f"User '{user_id}' not found")

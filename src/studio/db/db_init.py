"""Database initialization helpers."""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db_models import Base, UserModel

DEMO_USER_ID = "demo-user-123"
DEMO_USERNAME = "demo"
DEMO_PASSWORD = "demo"


def init_db(
    engine: Engine,
    session_factory: sessionmaker[Session],
    *,
    demo_user_id: str = DEMO_USER_ID,
    demo_user_credits: int = 20,
) -> None:
    """Create tables and seed the demo user if it is missing."""
    Base.metadata.create_all(engine)

    with session_factory() as session:
        _seed_demo_user(session, demo_user_id, demo_user_credits)
        session.commit()


def _seed_demo_user(session: Session, user_id: str, credits: int) -> None:
    if session.get(UserModel, user_id) is not None:
        return
    session.add(
        UserModel(
            id=user_id,
            username=DEMO_USERNAME if user_id == DEMO_USER_ID else user_id,
            password=DEMO_PASSWORD,
            credits=credits,
        )
    )

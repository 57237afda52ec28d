"""Database models and bootstrap helpers."""

from .db_models import Base, JobModel, SessionModel, UserModel

__all__ = [
    "Base",
    "JobModel",
    "SessionModel",
    "UserModel",
]

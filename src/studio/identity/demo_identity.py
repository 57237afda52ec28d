"""Single demo identity with a per-client session id."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, Request

DEFAULT_SESSION_ID = "demo-session"


@dataclass(slots=True, frozen=True)
class Identity:
    user_id: str
    session_id: str


def get_identity(
    request: Request,
    x_session_id: str | None = Header(default=None, alias="X-Session-Id"),
) -> Identity:
    """Resolve the demo user and the caller's session id."""
    config = request.app.state.config  # type: ignore[attr-defined]
    session_id = (x_session_id or "").strip() or DEFAULT_SESSION_ID
    return Identity(user_id=config.demo_user_id, session_id=session_id)


__all__ = ["DEFAULT_SESSION_ID", "Identity", "get_identity"]

"""Application configuration builder."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db.db_init import init_db

DEFAULT_WEBHOOK_SECRET = "default-webhook-secret"


@dataclass(slots=True)
class MediaPaths:
    root: Path
    results: Path


@dataclass(slots=True)
class ProviderSelection:
    """Backend name configured for every tool."""

    text2image: str = "FLUX"
    text2mesh: str = "SIM"
    texturing: str = "SIM"
    img2video: str = "SIM"

    def for_tool(self, tool: str) -> str:
        return getattr(self, tool, "SIM")


@dataclass(slots=True)
class ProviderCredentials:
    meshy_api_key: str | None = None
    replicate_api_token: str | None = None


@dataclass(slots=True)
class PollingSettings:
    interval_seconds: float = 5.0
    max_attempts: int = 60


@dataclass(slots=True)
class AppConfig:
    media_paths: MediaPaths
    database_url: str
    engine: Engine
    session_factory: sessionmaker[Session]
    providers: ProviderSelection = field(default_factory=ProviderSelection)
    credentials: ProviderCredentials = field(default_factory=ProviderCredentials)
    polling: PollingSettings = field(default_factory=PollingSettings)
    webhook_secret: str = DEFAULT_WEBHOOK_SECRET
    base_url: str | None = None
    admin_password: str | None = None
    demo_user_id: str = "demo-user-123"
    demo_user_credits: int = 20
    heavy_jobs_per_hour: int = 5
    sim_latency_seconds: dict[str, float] = field(default_factory=dict)


def _ensure_media_paths(paths: MediaPaths) -> None:
    paths.root.mkdir(parents=True, exist_ok=True)
    paths.results.mkdir(parents=True, exist_ok=True)


def _optional(name: str) -> str | None:
    value = (os.getenv(name) or "").strip()
    return value or None


def _sim_latency_overrides() -> dict[str, float]:
    """Read ``SIM_LATENCY_<TOOL>`` overrides (seconds)."""
    overrides: dict[str, float] = {}
    for tool in ("text2image", "text2mesh", "texturing", "img2video"):
        raw = _optional(f"SIM_LATENCY_{tool.upper()}")
        if raw is not None:
            overrides[tool] = float(raw)
    return overrides


def load_config() -> AppConfig:
    """Load configuration from environment (SQLite by default)."""
    root = Path(os.getenv("MEDIA_ROOT", "media"))
    media_paths = MediaPaths(root=root, results=root / "results")
    _ensure_media_paths(media_paths)

    providers = ProviderSelection(
        text2image=os.getenv("PROVIDER_TEXT2IMAGE", "FLUX").upper(),
        text2mesh=os.getenv("PROVIDER_3D", "SIM").upper(),
        texturing=os.getenv("PROVIDER_TEXTURE", "SIM").upper(),
        img2video=os.getenv("PROVIDER_VIDEO", "SIM").upper(),
    )
    credentials = ProviderCredentials(
        meshy_api_key=_optional("MESHY_API_KEY"),
        replicate_api_token=_optional("REPLICATE_API_TOKEN"),
    )
    polling = PollingSettings(
        interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", 5)),
        max_attempts=int(os.getenv("POLL_MAX_ATTEMPTS", 60)),
    )

    demo_user_id = os.getenv("DEMO_USER_ID", "demo-user-123")
    demo_user_credits = int(os.getenv("DEMO_USER_CREDITS", 20))

    database_url = os.getenv("DATABASE_URL", "sqlite:///studio.db")
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, future=True, connect_args=connect_args)
    session_factory: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)

    init_db(
        engine,
        session_factory,
        demo_user_id=demo_user_id,
        demo_user_credits=demo_user_credits,
    )

    return AppConfig(
        media_paths=media_paths,
        database_url=database_url,
        engine=engine,
        session_factory=session_factory,
        providers=providers,
        credentials=credentials,
        polling=polling,
        webhook_secret=os.getenv("WEBHOOK_SECRET", DEFAULT_WEBHOOK_SECRET),
        base_url=_optional("BASE_URL"),
        admin_password=_optional("ADMIN_PASSWORD"),
        demo_user_id=demo_user_id,
        demo_user_credits=demo_user_credits,
        heavy_jobs_per_hour=int(os.getenv("HEAVY_JOBS_PER_HOUR", 5)),
        sim_latency_seconds=_sim_latency_overrides(),
    )

"""Dependency wiring helpers."""

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from .config import AppConfig
from .jobs.jobs_api import router as jobs_router
from .jobs.jobs_service import JobOrchestrator
from .jobs.rate_limiter import HeavyJobRateLimiter
from .media.media_api import router as media_router
from .media.media_service import MEDIA_URL_PREFIX, AssetStore
from .providers.providers_factory import ProviderFactory
from .repositories.job_repository import JobRepository
from .repositories.session_repository import SessionRepository
from .repositories.user_repository import UserRepository
from .webhooks.webhook_api import router as webhook_router
from .webhooks.webhook_service import WebhookService


def build_orchestrator(config: AppConfig, asset_store: AssetStore) -> JobOrchestrator:
    """Assemble the orchestrator and its collaborators from configuration."""
    provider_factory = ProviderFactory(
        selection=config.providers,
        credentials=config.credentials,
        asset_store=asset_store,
        sim_latencies=config.sim_latency_seconds,
    )
    rate_limiter = HeavyJobRateLimiter(
        session_repo=SessionRepository(config.session_factory),
        limit=config.heavy_jobs_per_hour,
    )
    return JobOrchestrator(
        session_factory=config.session_factory,
        user_repo=UserRepository(config.session_factory),
        job_repo=JobRepository(config.session_factory),
        rate_limiter=rate_limiter,
        provider_factory=provider_factory,
        polling=config.polling,
        default_credits=config.demo_user_credits,
    )


def include_routers(app: FastAPI, config: AppConfig) -> None:
    """Mount module routers and attach services."""
    asset_store = AssetStore(config.media_paths)
    orchestrator = build_orchestrator(config, asset_store)

    app.state.config = config
    app.state.asset_store = asset_store
    app.state.job_orchestrator = orchestrator
    app.state.webhook_service = WebhookService(
        orchestrator=orchestrator, secret=config.webhook_secret
    )

    app.include_router(jobs_router)
    app.include_router(media_router)
    app.include_router(webhook_router)

    app.mount(
        MEDIA_URL_PREFIX,
        StaticFiles(directory=config.media_paths.root, check_dir=False),
        name="media",
    )

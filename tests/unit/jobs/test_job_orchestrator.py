from __future__ import annotations

import asyncio
import json
import threading
from datetime import datetime, timedelta

import pytest

from src.studio.config import PollingSettings, ProviderCredentials, ProviderSelection
from src.studio.jobs.jobs_errors import (
    InsufficientCreditsError,
    JobNotFoundError,
    JobStateError,
    JobValidationError,
    RateLimitExceededError,
)
from src.studio.jobs.jobs_models import JobStatus, Tool
from src.studio.jobs.jobs_service import JobOrchestrator
from src.studio.jobs.rate_limiter import HeavyJobRateLimiter
from src.studio.media.media_service import AssetStore
from src.studio.providers.providers_base import ProviderResult
from src.studio.providers.providers_factory import ProviderFactory
from src.studio.repositories.job_repository import JobRepository
from src.studio.repositories.session_repository import SessionRepository
from src.studio.repositories.user_repository import UserRepository
from src.studio.webhooks.webhook_service import WebhookService
from src.studio.webhooks.webhook_signature import sign_payload

ZERO_LATENCY = {"text2image": 0.0, "text2mesh": 0.0, "texturing": 0.0, "img2video": 0.0}
SLOW_LATENCY = {"text2image": 600.0, "text2mesh": 600.0, "texturing": 600.0, "img2video": 600.0}


class FakeMonotonic:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeUtcClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now


async def block_forever(_: float) -> None:
    await asyncio.Event().wait()


def build_orchestrator(
    session_factory,
    media_paths,
    *,
    latencies: dict[str, float] | None = None,
    selection: ProviderSelection | None = None,
    polling: PollingSettings | None = None,
    sleep=None,
    sim_clock=None,
    rate_clock=None,
    default_credits: int = 20,
) -> JobOrchestrator:
    factory_kwargs = {}
    if sim_clock is not None:
        factory_kwargs["sim_clock"] = sim_clock
    factory = ProviderFactory(
        selection=selection or ProviderSelection(),
        credentials=ProviderCredentials(),
        asset_store=AssetStore(media_paths),
        sim_latencies=dict(latencies if latencies is not None else ZERO_LATENCY),
        **factory_kwargs,
    )
    limiter_kwargs = {"clock": rate_clock} if rate_clock is not None else {}
    limiter = HeavyJobRateLimiter(
        session_repo=SessionRepository(session_factory), limit=5, **limiter_kwargs
    )
    orchestrator_kwargs = {"sleep": sleep} if sleep is not None else {}
    return JobOrchestrator(
        session_factory=session_factory,
        user_repo=UserRepository(session_factory),
        job_repo=JobRepository(session_factory),
        rate_limiter=limiter,
        provider_factory=factory,
        polling=polling or PollingSettings(interval_seconds=0.0, max_attempts=3),
        default_credits=default_credits,
        **orchestrator_kwargs,
    )


async def wait_until_dispatched(orchestrator: JobOrchestrator, job_id: str) -> None:
    for _ in range(20):
        if orchestrator.get_job(job_id).provider_job_id:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"job {job_id} was never dispatched")


@pytest.mark.asyncio
async def test_two_image_jobs_debit_one_credit_each(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(session_factory, media_paths, default_credits=10)

    first = await orchestrator.create_job("text2image", "sunset", None, user_id="u1", session_id="s1")
    second = await orchestrator.create_job("text2image", "sunrise", None, user_id="u1", session_id="s1")

    assert first.id != second.id
    assert first.status is JobStatus.QUEUED
    assert first.provider == "FLUX"
    assert orchestrator.get_credits("u1") == 8

    await orchestrator.join(first.id)
    await orchestrator.join(second.id)

    for job_id in (first.id, second.id):
        job = orchestrator.get_job(job_id)
        assert job.status is JobStatus.COMPLETED
        assert job.asset_urls
        assert job.provider_job_id.startswith("sim_text2image_")
    assert orchestrator.get_credits("u1") == 8


@pytest.mark.asyncio
async def test_failed_mesh_job_refunds_all_credits(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(session_factory, media_paths, default_credits=5)

    job = await orchestrator.create_job(
        "text2mesh", "[fail] a robot", {"style": "cartoon"}, user_id="u1", session_id="s1"
    )
    assert orchestrator.get_credits("u1") == 0

    await orchestrator.join(job.id)

    failed = orchestrator.get_job(job.id)
    assert failed.status is JobStatus.FAILED
    assert failed.meta["error"] == "Simulated text2mesh failure"
    assert failed.asset_urls == []
    assert orchestrator.get_credits("u1") == 5


@pytest.mark.asyncio
async def test_insufficient_credits_rejects_without_side_effects(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(session_factory, media_paths, default_credits=3)

    with pytest.raises(InsufficientCreditsError) as excinfo:
        await orchestrator.create_job("text2mesh", "a robot", None, user_id="u1", session_id="s1")

    assert excinfo.value.remaining == 3
    assert excinfo.value.cost == 5
    assert orchestrator.get_credits("u1") == 3
    assert orchestrator.list_jobs("u1").total == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("tool", "prompt", "inputs"),
    [
        ("sculpting", "a robot", None),
        ("text2mesh", "   ", None),
        ("text2mesh", None, None),
        ("texturing", "rusty", {}),
        ("img2video", "pan left", {"modelUrl": "https://e.com/m.glb"}),
    ],
)
async def test_invalid_requests_are_rejected(session_factory, media_paths, tool, prompt, inputs) -> None:
    orchestrator = build_orchestrator(session_factory, media_paths)

    with pytest.raises(JobValidationError):
        await orchestrator.create_job(tool, prompt, inputs, user_id="u1", session_id="s1")

    assert orchestrator.get_credits("u1") == 20


@pytest.mark.asyncio
async def test_heavy_jobs_are_limited_per_session_window(session_factory, media_paths) -> None:
    clock = FakeUtcClock()
    orchestrator = build_orchestrator(
        session_factory, media_paths, rate_clock=clock, default_credits=100
    )

    for _ in range(5):
        await orchestrator.create_job(
            "texturing", "rust", {"modelUrl": "https://e.com/m.glb"}, user_id="u1", session_id="s1"
        )

    with pytest.raises(RateLimitExceededError) as excinfo:
        await orchestrator.create_job("text2mesh", "robot", None, user_id="u1", session_id="s1")
    assert excinfo.value.limit == 5
    assert orchestrator.get_credits("u1") == 100 - 5 * 3

    light = await orchestrator.create_job("text2image", "cat", None, user_id="u1", session_id="s1")
    other_session = await orchestrator.create_job("text2mesh", "robot", None, user_id="u1", session_id="s2")
    assert light.status is JobStatus.QUEUED
    assert other_session.status is JobStatus.QUEUED

    clock.now += timedelta(hours=1, seconds=1)
    later = await orchestrator.create_job("text2mesh", "robot", None, user_id="u1", session_id="s1")
    assert later.credits_used == 5

    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_polling_completes_job_after_latency(session_factory, media_paths) -> None:
    sim_clock = FakeMonotonic()

    async def advance(_: float) -> None:
        sim_clock.now += 5.0

    orchestrator = build_orchestrator(
        session_factory,
        media_paths,
        latencies={"text2mesh": 8.0},
        sleep=advance,
        sim_clock=sim_clock,
        polling=PollingSettings(interval_seconds=5.0, max_attempts=5),
    )

    job = await orchestrator.create_job("text2mesh", "a flower", None, user_id="u1", session_id="s1")
    await orchestrator.join(job.id)

    done = orchestrator.get_job(job.id)
    assert done.status is JobStatus.COMPLETED
    assert done.asset_urls == ["https://modelviewer.dev/shared-assets/models/Flower/Flower.glb"]
    assert done.meta["provider_job_id"] == done.provider_job_id
    assert orchestrator.get_credits("u1") == 15


@pytest.mark.asyncio
async def test_polling_timeout_fails_and_refunds(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(
        session_factory,
        media_paths,
        latencies=SLOW_LATENCY,
        polling=PollingSettings(interval_seconds=0.0, max_attempts=2),
    )

    job = await orchestrator.create_job(
        "img2video", "pan", {"imageUrl": "https://e.com/i.png"}, user_id="u1", session_id="s1"
    )
    await orchestrator.join(job.id)

    failed = orchestrator.get_job(job.id)
    assert failed.status is JobStatus.FAILED
    assert "did not finish after 2 status checks" in failed.meta["error"]
    assert orchestrator.get_credits("u1") == 20


@pytest.mark.asyncio
async def test_repeated_failures_refund_once(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(
        session_factory, media_paths, latencies=SLOW_LATENCY, sleep=block_forever
    )
    job = await orchestrator.create_job("text2mesh", "robot", None, user_id="u1", session_id="s1")
    await wait_until_dispatched(orchestrator, job.id)
    provider_job_id = orchestrator.get_job(job.id).provider_job_id

    assert orchestrator.fail_job(job.id, "Provider did not finish") is True
    updated = orchestrator.handle_provider_update(provider_job_id, "failed", error="vendor failed")
    assert orchestrator.fail_job(job.id, "again") is False

    assert updated.status is JobStatus.FAILED
    assert updated.meta["error"] == "Provider did not finish"
    assert orchestrator.get_credits("u1") == 20

    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_poll_timeout_racing_webhook_failure_refunds_once(
    session_factory, media_paths, monkeypatch
) -> None:
    orchestrator = build_orchestrator(
        session_factory, media_paths, latencies=SLOW_LATENCY, sleep=block_forever
    )
    webhooks = WebhookService(orchestrator=orchestrator, secret="race-secret")
    job = await orchestrator.create_job("text2mesh", "robot", None, user_id="u1", session_id="s1")
    await wait_until_dispatched(orchestrator, job.id)
    provider_job_id = orchestrator.get_job(job.id).provider_job_id
    body = json.dumps(
        {"providerJobId": provider_job_id, "status": "failed", "error": "vendor failed"}
    ).encode("utf-8")

    # The timeout path reads the job as processing, then waits on its status
    # update until the webhook has failed and refunded the job.
    timeout_read_job = threading.Event()
    webhook_applied = threading.Event()
    original_cas = JobRepository._cas

    def cas_after_webhook(db, job_id, *, from_statuses, values):
        if threading.current_thread().name == "poll-timeout":
            timeout_read_job.set()
            webhook_applied.wait(timeout=5)
        return original_cas(db, job_id, from_statuses=from_statuses, values=values)

    monkeypatch.setattr(JobRepository, "_cas", staticmethod(cas_after_webhook))
    outcomes: dict[str, object] = {}

    def poll_timeout() -> None:
        outcomes["timeout"] = orchestrator.fail_job(
            job.id, "Provider did not finish after 3 status checks"
        )

    def deliver_webhook() -> None:
        timeout_read_job.wait(timeout=5)
        try:
            outcomes["webhook"] = webhooks.handle(body, sign_payload(body, "race-secret"))
        finally:
            webhook_applied.set()

    threads = [
        threading.Thread(target=poll_timeout, name="poll-timeout"),
        threading.Thread(target=deliver_webhook, name="webhook"),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert timeout_read_job.is_set()
    assert outcomes["timeout"] is False
    assert outcomes["webhook"].status is JobStatus.FAILED
    failed = orchestrator.get_job(job.id)
    assert failed.status is JobStatus.FAILED
    assert failed.meta["error"] == "vendor failed"
    assert orchestrator.get_credits("u1") == 20

    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_provider_update_completes_job_and_is_idempotent(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(
        session_factory, media_paths, latencies=SLOW_LATENCY, sleep=block_forever
    )
    job = await orchestrator.create_job("text2mesh", "robot", None, user_id="u1", session_id="s1")
    await wait_until_dispatched(orchestrator, job.id)
    provider_job_id = orchestrator.get_job(job.id).provider_job_id

    result = ProviderResult(asset_urls=["https://cdn.example.com/robot.glb"], meta={"source": "webhook"})
    completed = orchestrator.handle_provider_update(provider_job_id, "completed", result=result)
    again = orchestrator.handle_provider_update(
        job.id,
        "completed",
        result=ProviderResult(asset_urls=["https://cdn.example.com/other.glb"]),
    )
    late_failure = orchestrator.handle_provider_update(job.id, "failed", error="late")

    assert completed.status is JobStatus.COMPLETED
    assert completed.asset_urls == ["https://cdn.example.com/robot.glb"]
    assert completed.meta["source"] == "webhook"
    assert again.asset_urls == completed.asset_urls
    assert late_failure.status is JobStatus.COMPLETED
    assert orchestrator.get_credits("u1") == 15

    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_provider_update_for_unknown_job_raises(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(session_factory, media_paths)

    with pytest.raises(JobNotFoundError):
        orchestrator.handle_provider_update("nope", "completed")


@pytest.mark.asyncio
async def test_poller_stops_when_job_already_terminal(session_factory, media_paths) -> None:
    polls: list[float] = []
    orchestrator = build_orchestrator(
        session_factory,
        media_paths,
        latencies=SLOW_LATENCY,
        polling=PollingSettings(interval_seconds=1.0, max_attempts=10),
    )

    async def sleep_then_complete(interval: float) -> None:
        polls.append(interval)
        orchestrator.handle_provider_update(
            job_id, "completed", result=ProviderResult(asset_urls=["https://cdn.example.com/a.png"])
        )

    orchestrator.sleep = sleep_then_complete
    job = await orchestrator.create_job("text2image", "cat", None, user_id="u1", session_id="s1")
    job_id = job.id
    await orchestrator.join(job.id)

    assert polls == [1.0]
    assert orchestrator.get_job(job.id).status is JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancel_job_refunds_and_rejects_second_cancel(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(
        session_factory, media_paths, latencies=SLOW_LATENCY, sleep=block_forever
    )
    job = await orchestrator.create_job(
        "texturing", "rust", {"modelUrl": "https://e.com/m.glb"}, user_id="u1", session_id="s1"
    )
    await wait_until_dispatched(orchestrator, job.id)

    cancelled = orchestrator.cancel_job(job.id, user_id="u1")

    assert cancelled.status is JobStatus.FAILED
    assert cancelled.meta["error"] == "Canceled by user"
    assert orchestrator.get_credits("u1") == 20
    with pytest.raises(JobStateError):
        orchestrator.cancel_job(job.id, user_id="u1")
    with pytest.raises(JobNotFoundError):
        orchestrator.cancel_job(job.id, user_id="someone-else")

    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_vendor_without_credentials_completes_via_simulation(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(
        session_factory,
        media_paths,
        selection=ProviderSelection(text2mesh="MESHY", img2video="REPLICATE"),
    )

    job = await orchestrator.create_job("text2mesh", "a car", None, user_id="u1", session_id="s1")
    await orchestrator.join(job.id)

    done = orchestrator.get_job(job.id)
    assert done.provider == "SIM"
    assert done.status is JobStatus.COMPLETED
    assert done.asset_urls == ["https://threejs.org/examples/models/gltf/ferrari.glb"]


@pytest.mark.asyncio
async def test_resume_inflight_reschedules_active_jobs(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(session_factory, media_paths)
    user_repo = UserRepository(session_factory)
    job_repo = JobRepository(session_factory)
    user_repo.ensure_user("u1", default_credits=20)
    user_repo.try_debit("u1", 6)

    def queued_job(tool: Tool, credits_used: int):
        return job_repo.create_queued(
            tool=tool,
            prompt="robot",
            inputs=None,
            user_id="u1",
            session_id="s1",
            credits_used=credits_used,
            provider="SIM",
        )

    queued = queued_job(Tool.TEXT2IMAGE, 1)
    orphaned = queued_job(Tool.TEXT2MESH, 5)
    job_repo.mark_processing(orphaned.id)
    job_repo.record_dispatch(orphaned.id, provider_job_id="sim_text2mesh_999999")

    assert orchestrator.resume_inflight() == 2
    await orchestrator.join(queued.id)
    await orchestrator.join(orphaned.id)

    assert orchestrator.get_job(queued.id).status is JobStatus.COMPLETED
    lost = orchestrator.get_job(orphaned.id)
    assert lost.status is JobStatus.FAILED
    assert lost.meta["error"].startswith("Status check failed")
    assert orchestrator.get_credits("u1") == 19


@pytest.mark.asyncio
async def test_restart_does_not_reuse_simulation_job_ids(session_factory, media_paths) -> None:
    before_restart = build_orchestrator(
        session_factory, media_paths, latencies=SLOW_LATENCY, sleep=block_forever
    )
    old = await before_restart.create_job("text2mesh", "a dragon", None, user_id="u1", session_id="s1")
    await wait_until_dispatched(before_restart, old.id)
    await before_restart.shutdown()

    after_restart = build_orchestrator(
        session_factory,
        media_paths,
        latencies=SLOW_LATENCY,
        polling=PollingSettings(interval_seconds=0.0, max_attempts=3),
    )
    new = await after_restart.create_job("text2mesh", "a red car", None, user_id="u1", session_id="s2")
    await wait_until_dispatched(after_restart, new.id)

    assert after_restart.resume_inflight() == 1
    await after_restart.join(old.id)

    old_pid = after_restart.get_job(old.id).provider_job_id
    new_pid = after_restart.get_job(new.id).provider_job_id
    assert old_pid != new_pid
    lost = after_restart.get_job(old.id)
    assert lost.status is JobStatus.FAILED
    assert lost.asset_urls == []
    assert lost.meta["error"].startswith("Status check failed")

    await after_restart.shutdown()


@pytest.mark.asyncio
async def test_credit_conservation_across_mixed_outcomes(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(session_factory, media_paths, default_credits=20)

    prompts = [
        ("text2image", "cat"),
        ("text2mesh", "[fail] robot"),
        ("text2mesh", "teapot"),
        ("img2video", "[fail] pan"),
    ]
    jobs = []
    for tool, prompt in prompts:
        inputs = {"imageUrl": "https://e.com/i.png"} if tool == "img2video" else None
        jobs.append(await orchestrator.create_job(tool, prompt, inputs, user_id="u1", session_id="s1"))
    for job in jobs:
        await orchestrator.join(job.id)

    spent = sum(
        record.credits_used
        for record in orchestrator.list_jobs("u1", limit=100).jobs
        if record.status is JobStatus.COMPLETED
    )
    assert spent == 1 + 5
    assert orchestrator.get_credits("u1") == 20 - spent


@pytest.mark.asyncio
async def test_grant_credits_and_list_pagination(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(session_factory, media_paths)

    assert orchestrator.grant_credits("u1", 5) == 25
    with pytest.raises(JobValidationError):
        orchestrator.grant_credits("u1", 0)

    for prompt in ("one", "two", "three"):
        await orchestrator.create_job("text2image", prompt, None, user_id="u1", session_id="s1")
    page = orchestrator.list_jobs("u1", limit=2, offset=0)

    assert page.total == 3
    assert len(page.jobs) == 2
    assert page.jobs[0].created_at >= page.jobs[1].created_at

    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_shutdown_cancels_background_tasks(session_factory, media_paths) -> None:
    orchestrator = build_orchestrator(
        session_factory, media_paths, latencies=SLOW_LATENCY, sleep=block_forever
    )
    job = await orchestrator.create_job("text2mesh", "robot", None, user_id="u1", session_id="s1")
    await wait_until_dispatched(orchestrator, job.id)

    await orchestrator.shutdown()
    await orchestrator.join(job.id)

    assert orchestrator.get_job(job.id).status is JobStatus.PROCESSING

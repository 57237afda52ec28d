"""Domain service driving generation jobs from request to terminal state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from ..config import PollingSettings
from ..exceptions import NotFoundError
from ..providers.providers_base import (
    ProviderJob,
    ProviderJobStatus,
    ProviderResult,
    StatusProvider,
    submit_request,
)
from ..providers.providers_factory import ProviderFactory, build_request
from ..repositories.job_repository import JobRepository
from ..repositories.user_repository import UserRepository
from .jobs_errors import (
    InsufficientCreditsError,
    JobNotFoundError,
    JobStateError,
    JobValidationError,
    ProviderTimeoutError,
)
from .jobs_models import (
    ACTIVE_STATUSES,
    TOOL_COSTS,
    JobPage,
    JobRecord,
    JobStatus,
    is_heavy,
    parse_tool,
)
from .rate_limiter import HeavyJobRateLimiter

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
CANCELED_ERROR = "Canceled by user"


@dataclass(slots=True)
class JobOrchestrator:
    """Coordinates credits, rate limits, providers and job state.

    Every job runs in its own asyncio task keyed by job id. Terminal
    transitions go through :meth:`complete_job` and :meth:`fail_job`, which
    are compare-and-set updates, so the poller, webhooks and cancellation can
    race without double refunds.
    """

    session_factory: sessionmaker[Session]
    user_repo: UserRepository
    job_repo: JobRepository
    rate_limiter: HeavyJobRateLimiter
    provider_factory: ProviderFactory
    polling: PollingSettings = field(default_factory=PollingSettings)
    default_credits: int = 20
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    log: logging.Logger = field(default_factory=lambda: logger)
    _tasks: dict[str, asyncio.Task[None]] = field(default_factory=dict, init=False, repr=False)

    async def create_job(
        self,
        tool: str,
        prompt: str | None,
        inputs: dict[str, Any] | None,
        *,
        user_id: str,
        session_id: str,
    ) -> JobRecord:
        parsed = parse_tool(tool)
        if parsed is None:
            raise JobValidationError(f"Invalid tool '{tool}'")
        text = (prompt or "").strip()
        if not text:
            raise JobValidationError("Prompt is required")
        build_request(parsed, text, inputs)

        cost = TOOL_COSTS[parsed]
        balance = self.user_repo.ensure_user(user_id, default_credits=self.default_credits)
        if balance < cost:
            raise self._insufficient(balance, cost)
        heavy = is_heavy(parsed)
        if heavy:
            self.rate_limiter.check(session_id, user_id)

        provider_name = self.provider_factory.provider_name(parsed)
        debited = False
        job: JobRecord | None = None
        with self.session_factory() as session:
            try:
                debited = self.user_repo.try_debit(user_id, cost, session=session)
                if debited:
                    job = self.job_repo.create_queued(
                        tool=parsed,
                        prompt=text,
                        inputs=inputs,
                        user_id=user_id,
                        session_id=session_id,
                        credits_used=cost,
                        provider=provider_name,
                        session=session,
                    )
                    if heavy:
                        self.rate_limiter.record(session_id, user_id, session=session)
                    session.commit()
                else:
                    session.rollback()
            except Exception:
                session.rollback()
                raise
        if not debited or job is None:
            raise self._insufficient(self.user_repo.get_credits(user_id), cost)

        self.log.info(
            "jobs.create.accepted",
            extra={
                "job_id": job.id,
                "tool": parsed.value,
                "provider": provider_name,
                "user_id": user_id,
                "session_id": session_id,
                "credits_used": cost,
            },
        )
        self._spawn(job.id, self._run(job.id))
        return job

    def get_job(self, job_id: str) -> JobRecord:
        try:
            return self.job_repo.get_job(job_id)
        except NotFoundError as exc:
            raise JobNotFoundError(f"Job '{job_id}' not found") from exc

    def list_jobs(self, user_id: str, *, limit: int = 20, offset: int = 0) -> JobPage:
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        offset = max(0, int(offset))
        return self.job_repo.list_for_user(user_id, limit=limit, offset=offset)

    def get_credits(self, user_id: str) -> int:
        return self.user_repo.ensure_user(user_id, default_credits=self.default_credits)

    def grant_credits(self, user_id: str, amount: int) -> int:
        if amount <= 0:
            raise JobValidationError("amount must be a positive integer")
        self.user_repo.ensure_user(user_id, default_credits=self.default_credits)
        self.user_repo.credit(user_id, amount)
        balance = self.user_repo.get_credits(user_id)
        self.log.info(
            "jobs.credits.granted",
            extra={"user_id": user_id, "amount": amount, "balance": balance},
        )
        return balance

    def cancel_job(self, job_id: str, *, user_id: str | None = None) -> JobRecord:
        job = self.get_job(job_id)
        if user_id is not None and job.user_id != user_id:
            raise JobNotFoundError(f"Job '{job_id}' not found")
        if job.is_terminal or not self.fail_job(job_id, CANCELED_ERROR):
            raise JobStateError(f"Job '{job_id}' is already {self.get_job(job_id).status}")
        task = self._tasks.pop(job_id, None)
        if task is not None:
            task.cancel()
        self.log.info("jobs.cancel.done", extra={"job_id": job_id})
        return self.get_job(job_id)

    def complete_job(self, job_id: str, result: ProviderResult | None) -> bool:
        """Move an active job to ``completed``; ``False`` if it was already terminal."""
        if result is None or not result.asset_urls:
            return self.fail_job(job_id, "Provider completed without assets")
        won = self.job_repo.mark_completed(job_id, asset_urls=result.asset_urls, meta=result.meta)
        if won:
            self.log.info(
                "jobs.complete.done",
                extra={"job_id": job_id, "asset_count": len(result.asset_urls)},
            )
        else:
            self.log.info("jobs.complete.skipped", extra={"job_id": job_id})
        return won

    def fail_job(self, job_id: str, error: str) -> bool:
        """Fail an active job and refund its credits in the same transaction.

        The refund is applied only by the caller whose status update won, so
        a job is refunded at most once.
        """
        with self.session_factory() as session:
            try:
                before = self.job_repo.mark_failed(job_id, error=error, session=session)
                if before is not None and before.credits_used > 0:
                    self.user_repo.credit(before.user_id, before.credits_used, session=session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        if before is None:
            self.log.info("jobs.fail.skipped", extra={"job_id": job_id, "error": error})
            return False
        self.log.warning(
            "jobs.fail.refunded",
            extra={
                "job_id": job_id,
                "error": error,
                "user_id": before.user_id,
                "refund": before.credits_used,
            },
        )
        return True

    def handle_provider_update(
        self,
        identifier: str,
        status: str,
        *,
        result: ProviderResult | None = None,
        error: str | None = None,
    ) -> JobRecord:
        """Apply a provider callback to the job it refers to.

        ``identifier`` is matched against provider job ids first and internal
        job ids second. Updates for terminal jobs are ignored.
        """
        job = self.job_repo.find_by_provider_job_id(identifier)
        if job is None:
            job = self.get_job(identifier)
        if job.is_terminal:
            self.log.info(
                "jobs.update.ignored",
                extra={"job_id": job.id, "status": job.status.value, "reported": status},
            )
            return job

        normalized = status.lower()
        if normalized in {"completed", "succeeded", "success"}:
            self.complete_job(job.id, result)
        elif normalized in {"failed", "error", "canceled", "cancelled"}:
            self.fail_job(job.id, error or "Provider reported failure")
        else:
            self.log.info(
                "jobs.update.progress",
                extra={"job_id": job.id, "reported": status},
            )
        return self.get_job(job.id)

    def resume_inflight(self) -> int:
        """Reschedule work for jobs left active by a previous process."""
        resumed = 0
        for job in self.job_repo.list_by_status(ACTIVE_STATUSES):
            if job.id in self._tasks:
                continue
            if job.status is JobStatus.QUEUED:
                self._spawn(job.id, self._run(job.id))
            elif job.provider_job_id:
                provider = self.provider_factory.provider_for_name(job.provider, job.tool)
                poll = self._poll(job.id, provider, job.provider_job_id)
                self._spawn(job.id, self._guarded(job.id, poll))
            else:
                self.fail_job(job.id, "Dispatch was interrupted before the provider accepted the job")
                continue
            resumed += 1
        if resumed:
            self.log.info("jobs.resume.scheduled", extra={"count": resumed})
        return resumed

    async def join(self, job_id: str) -> None:
        """Wait until the background task for ``job_id`` (if any) finishes."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.log.info("jobs.shutdown.done", extra={"cancelled": len(tasks)})

    def _spawn(self, job_id: str, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro, name=f"job-{job_id}")
        self._tasks[job_id] = task

        def _forget(done: asyncio.Task[None]) -> None:
            if self._tasks.get(job_id) is done:
                del self._tasks[job_id]

        task.add_done_callback(_forget)

    async def _run(self, job_id: str) -> None:
        await self._guarded(job_id, self._dispatch(job_id))

    async def _guarded(self, job_id: str, work: Coroutine[Any, Any, None]) -> None:
        try:
            await work
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.log.exception("jobs.task.crashed", extra={"job_id": job_id})
            self.fail_job(job_id, f"Internal error: {exc}")

    async def _dispatch(self, job_id: str) -> None:
        if not self.job_repo.mark_processing(job_id):
            self.log.info("jobs.dispatch.skipped", extra={"job_id": job_id})
            return
        job = self.job_repo.get_job(job_id)
        try:
            provider = self.provider_factory.provider_for_name(job.provider, job.tool)
            request = build_request(job.tool, job.prompt, job.inputs)
            handle = await submit_request(provider, request)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.log.warning(
                "jobs.dispatch.failed",
                extra={"job_id": job_id, "provider": job.provider, "error": str(exc)},
            )
            self.fail_job(job_id, f"Dispatch failed: {exc}")
            return

        provider_meta = {"provider_job_id": handle.id, **handle.meta}
        if not self.job_repo.record_dispatch(
            job_id, provider_job_id=handle.id, provider_meta=provider_meta
        ):
            self.log.info("jobs.dispatch.superseded", extra={"job_id": job_id})
            return
        self.log.info(
            "jobs.dispatch.submitted",
            extra={
                "job_id": job_id,
                "provider": provider.name,
                "provider_job_id": handle.id,
                "provider_status": handle.status.value,
            },
        )
        if self._apply_handle(job_id, handle):
            return
        await self._poll(job_id, provider, handle.id)

    async def _poll(self, job_id: str, provider: StatusProvider, provider_job_id: str) -> None:
        attempts = max(1, self.polling.max_attempts)
        for attempt in range(1, attempts + 1):
            await self.sleep(self.polling.interval_seconds)
            if self.job_repo.get_job(job_id).is_terminal:
                self.log.info("jobs.poll.stopped", extra={"job_id": job_id, "attempt": attempt})
                return
            try:
                handle = await provider.get_status(provider_job_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.log.warning(
                    "jobs.poll.failed",
                    extra={"job_id": job_id, "attempt": attempt, "error": str(exc)},
                )
                self.fail_job(job_id, f"Status check failed: {exc}")
                return
            if self._apply_handle(job_id, handle):
                return
        timeout = ProviderTimeoutError(
            f"Provider did not finish after {attempts} status checks"
        )
        self.log.warning("jobs.poll.timeout", extra={"job_id": job_id, "attempts": attempts})
        self.fail_job(job_id, str(timeout))

    def _apply_handle(self, job_id: str, handle: ProviderJob) -> bool:
        """Apply a terminal provider status; ``True`` when polling can stop."""
        if handle.status is ProviderJobStatus.COMPLETED:
            self.complete_job(job_id, handle.result)
            return True
        if handle.status is ProviderJobStatus.FAILED:
            self.fail_job(job_id, handle.error or "Provider reported failure")
            return True
        return False

    @staticmethod
    def _insufficient(balance: int, cost: int) -> InsufficientCreditsError:
        return InsufficientCreditsError(
            f"Insufficient credits: {cost} required, {balance} available",
            remaining=balance,
            cost=cost,
        )


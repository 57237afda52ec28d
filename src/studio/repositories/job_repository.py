"""Persistence layer for generation jobs."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..db.db_models import JobModel, utcnow
from ..exceptions import NotFoundError, handle_sqlalchemy_errors
from ..jobs.jobs_models import (
    ACTIVE_STATUSES,
    JobPage,
    JobRecord,
    JobStatus,
    Tool,
)
from .base import SessionScopedRepository


class JobRepository(SessionScopedRepository):
    """Manage job records.

    Status changes are compare-and-set updates: the ``WHERE`` clause pins the
    statuses the job may move from, and the caller learns from the returned
    flag whether its transition won.
    """

    def create_queued(
        self,
        *,
        tool: Tool,
        prompt: str,
        inputs: dict[str, Any] | None,
        user_id: str,
        session_id: str,
        credits_used: int,
        provider: str,
        job_id: str | None = None,
        now: datetime | None = None,
        session: Session | None = None,
    ) -> JobRecord:
        created_at = now or utcnow()
        model = JobModel(
            id=job_id or uuid.uuid4().hex,
            tool=tool.value,
            prompt=prompt,
            inputs=dict(inputs) if inputs else None,
            status=JobStatus.QUEUED.value,
            provider=provider,
            user_id=user_id,
            session_id=session_id,
            credits_used=credits_used,
            created_at=created_at,
            updated_at=created_at,
        )
        with handle_sqlalchemy_errors(entity="job"), self._scope(session) as db:
            db.add(model)
            db.flush()
            return self._to_record(model)

    def get_job(self, job_id: str) -> JobRecord:
        with self._session_factory() as session:
            model = session.get(JobModel, job_id)
            if model is None:
                raise NotFoundError(f"Job '{job_id}' not found")
            return self._to_record(model)

    def find_by_provider_job_id(self, provider_job_id: str) -> JobRecord | None:
        with self._session_factory() as session:
            model = session.execute(
                select(JobModel)
                .where(JobModel.provider_job_id == provider_job_id)
                .order_by(JobModel.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return self._to_record(model) if model is not None else None

    def list_for_user(self, user_id: str, *, limit: int = 20, offset: int = 0) -> JobPage:
        with self._session_factory() as session:
            total = session.execute(
                select(func.count()).select_from(JobModel).where(JobModel.user_id == user_id)
            ).scalar_one()
            rows = (
                session.execute(
                    select(JobModel)
                    .where(JobModel.user_id == user_id)
                    .order_by(JobModel.created_at.desc(), JobModel.id.desc())
                    .limit(limit)
                    .offset(offset)
                )
                .scalars()
                .all()
            )
            return JobPage(
                jobs=[self._to_record(row) for row in rows],
                limit=limit,
                offset=offset,
                total=total,
            )

    def list_by_status(self, statuses: Iterable[JobStatus]) -> list[JobRecord]:
        values = [status.value for status in statuses]
        with self._session_factory() as session:
            rows = (
                session.execute(
                    select(JobModel)
                    .where(JobModel.status.in_(values))
                    .order_by(JobModel.created_at)
                )
                .scalars()
                .all()
            )
            return [self._to_record(row) for row in rows]

    def mark_processing(self, job_id: str) -> bool:
        return self._transition(
            job_id,
            from_statuses=(JobStatus.QUEUED,),
            values={"status": JobStatus.PROCESSING.value},
        )

    def record_dispatch(
        self,
        job_id: str,
        *,
        provider_job_id: str,
        provider_meta: dict[str, Any] | None = None,
    ) -> bool:
        """Store the provider correlation id while the job is still processing."""
        with handle_sqlalchemy_errors(entity="job"), self._scope() as db:
            model = db.get(JobModel, job_id)
            if model is None:
                raise NotFoundError(f"Job '{job_id}' not found")
            meta = dict(model.meta or {})
            if provider_meta:
                meta.update(provider_meta)
            result = db.execute(
                update(JobModel)
                .where(
                    JobModel.id == job_id,
                    JobModel.status == JobStatus.PROCESSING.value,
                )
                .values(
                    provider_job_id=provider_job_id,
                    meta=meta or None,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def mark_completed(
        self,
        job_id: str,
        *,
        asset_urls: list[str],
        meta: dict[str, Any] | None = None,
    ) -> bool:
        if not asset_urls:
            raise ValueError("completed jobs require at least one asset url")
        with handle_sqlalchemy_errors(entity="job"), self._scope() as db:
            merged = self._merged_meta(db, job_id, meta)
            return self._cas(
                db,
                job_id,
                from_statuses=ACTIVE_STATUSES,
                values={
                    "status": JobStatus.COMPLETED.value,
                    "asset_urls": list(asset_urls),
                    "meta": merged,
                },
            )

    def mark_failed(
        self,
        job_id: str,
        *,
        error: str,
        meta: dict[str, Any] | None = None,
        session: Session | None = None,
    ) -> JobRecord | None:
        """Move an active job to ``failed``.

        Returns the record as it was before the transition, or ``None`` when
        another caller already moved the job to a terminal state.
        """
        with handle_sqlalchemy_errors(entity="job"), self._scope(session) as db:
            model = db.get(JobModel, job_id)
            if model is None:
                raise NotFoundError(f"Job '{job_id}' not found")
            before = self._to_record(model)
            merged = self._merged_meta(db, job_id, meta)
            merged["error"] = error
            won = self._cas(
                db,
                job_id,
                from_statuses=ACTIVE_STATUSES,
                values={"status": JobStatus.FAILED.value, "asset_urls": None, "meta": merged},
            )
            return before if won else None

    def _transition(
        self,
        job_id: str,
        *,
        from_statuses: Iterable[JobStatus],
        values: dict[str, Any],
    ) -> bool:
        with handle_sqlalchemy_errors(entity="job"), self._scope() as db:
            return self._cas(db, job_id, from_statuses=from_statuses, values=values)

    @staticmethod
    def _cas(
        db: Session,
        job_id: str,
        *,
        from_statuses: Iterable[JobStatus],
        values: dict[str, Any],
    ) -> bool:
        result = db.execute(
            update(JobModel)
            .where(
                JobModel.id == job_id,
                JobModel.status.in_([status.value for status in from_statuses]),
            )
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def _merged_meta(db: Session, job_id: str, extra: dict[str, Any] | None) -> dict[str, Any]:
        current = db.execute(select(JobModel.meta).where(JobModel.id == job_id)).scalar_one_or_none()
        merged = dict(current or {})
        if extra:
            merged.update(extra)
        return merged

    @staticmethod
    def _to_record(model: JobModel) -> JobRecord:
        return JobRecord(
            id=model.id,
            tool=Tool(model.tool),
            prompt=model.prompt,
            status=JobStatus(model.status),
            user_id=model.user_id,
            session_id=model.session_id,
            credits_used=model.credits_used,
            provider=model.provider,
            created_at=model.created_at,
            updated_at=model.updated_at,
            inputs=dict(model.inputs or {}),
            asset_urls=list(model.asset_urls or []),
            provider_job_id=model.provider_job_id,
            meta=dict(model.meta or {}),
        )

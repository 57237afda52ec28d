"""Pydantic schemas for the jobs API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .jobs_models import JobPage, JobRecord


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateJobRequest(BaseModel):
    tool: str | None = None
    prompt: str | None = None
    inputs: dict[str, Any] | None = None


class JobSummary(_CamelModel):
    id: str
    tool: str
    prompt: str
    status: str
    credits_used: int
    created_at: datetime


class JobDetails(JobSummary):
    inputs: dict[str, Any] = Field(default_factory=dict)
    asset_urls: list[str] = Field(default_factory=list)
    provider: str
    provider_job_id: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime


class CreateJobResponse(BaseModel):
    success: bool = True
    job: JobSummary


class Pagination(BaseModel):
    limit: int
    offset: int
    total: int


class JobListResponse(BaseModel):
    jobs: list[JobDetails]
    pagination: Pagination


class CreditsResponse(BaseModel):
    credits: int


class GrantCreditsRequest(_CamelModel):
    password: str | None = None
    user_id: str | None = None
    amount: int


def job_summary(job: JobRecord) -> JobSummary:
    return JobSummary(
        id=job.id,
        tool=job.tool.value,
        prompt=job.prompt,
        status=job.status.value,
        credits_used=job.credits_used,
        created_at=job.created_at,
    )


def job_details(job: JobRecord) -> JobDetails:
    return JobDetails(
        id=job.id,
        tool=job.tool.value,
        prompt=job.prompt,
        status=job.status.value,
        credits_used=job.credits_used,
        created_at=job.created_at,
        inputs=job.inputs,
        asset_urls=job.asset_urls,
        provider=job.provider,
        provider_job_id=job.provider_job_id,
        meta=job.meta,
        updated_at=job.updated_at,
    )


def job_list(page: JobPage) -> JobListResponse:
    return JobListResponse(
        jobs=[job_details(job) for job in page.jobs],
        pagination=Pagination(limit=page.limit, offset=page.offset, total=page.total),
    )

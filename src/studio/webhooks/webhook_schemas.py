"""Pydantic schemas for vendor callbacks."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WebhookResult(_CamelModel):
    asset_urls: list[str] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)


class WebhookPayload(_CamelModel):
    job_id: str | None = None
    provider_job_id: str | None = None
    status: str = Field(..., min_length=1)
    result: WebhookResult | None = None
    error: str | None = None

    @property
    def identifier(self) -> str | None:
        return self.provider_job_id or self.job_id


class WebhookAck(_CamelModel):
    status: str = "processed"
    job_id: str
    job_status: str

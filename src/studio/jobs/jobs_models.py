"""Data structures for the generation job lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class Tool(StrEnum):
    """Generation capabilities offered by the studio."""

    TEXT2IMAGE = "text2image"
    TEXT2MESH = "text2mesh"
    TEXTURING = "texturing"
    IMG2VIDEO = "img2video"


TOOL_COSTS: dict[Tool, int] = {
    Tool.TEXT2IMAGE: 1,
    Tool.TEXT2MESH: 5,
    Tool.TEXTURING: 3,
    Tool.IMG2VIDEO: 4,
}

# Every tool except the cheapest one counts against the hourly heavy-job limit.
HEAVY_TOOLS: frozenset[Tool] = frozenset({Tool.TEXT2MESH, Tool.TEXTURING, Tool.IMG2VIDEO})


class JobStatus(StrEnum):
    """Lifecycle statuses for job records."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
ACTIVE_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})


def parse_tool(value: str) -> Tool | None:
    try:
        return Tool(value)
    except ValueError:
        return None


def is_heavy(tool: Tool) -> bool:
    return tool in HEAVY_TOOLS


@dataclass(slots=True)
class JobRecord:
    """Snapshot of a persisted job."""

    id: str
    tool: Tool
    prompt: str
    status: JobStatus
    user_id: str
    session_id: str
    credits_used: int
    provider: str
    created_at: datetime
    updated_at: datetime
    inputs: dict[str, Any] = field(default_factory=dict)
    asset_urls: list[str] = field(default_factory=list)
    provider_job_id: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(slots=True)
class JobPage:
    """Paginated slice of a user's jobs."""

    jobs: list[JobRecord]
    limit: int
    offset: int
    total: int


class FailureReason(StrEnum):
    """Machine-readable reasons returned in HTTP error bodies."""

    INVALID_REQUEST = "invalid_request"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    RATE_LIMITED = "rate_limited"
    JOB_NOT_FOUND = "job_not_found"
    INVALID_STATE = "invalid_state"
    INVALID_PASSWORD = "invalid_password"
    ADMIN_DISABLED = "admin_disabled"
    INVALID_SIGNATURE = "invalid_signature"
    ASSET_NOT_FOUND = "asset_not_found"

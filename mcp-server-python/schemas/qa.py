"""Pydantic schemas for the QA queue tools."""

from __future__ import annotations

from typing import Any, Optional

from schemas.common import DbPathMixin, StrictIgnoreRequest, StrictResponse


class QaListRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for qa_pending_review and qa_failed_audits."""

    limit: Optional[int] = None


class QaStatsRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for qa_stats."""


class QaListResponse(StrictResponse):
    jobs: list[dict[str, Any]]
    count: int


class QaStatsResponse(StrictResponse):
    pending_review: int
    failed_audits: int
    total_failed_audits: int
    audits_by_status: dict[str, int]

"""Database record type definitions.

NOTE: This file must track database/schema.sql manually.
Use NotRequired for nullable/optional columns.
Add new types incrementally as needed - don't create unused types.
"""

from datetime import datetime
from typing import Any, NotRequired, TypedDict
from uuid import UUID


class JobRecordTD(TypedDict):
    """Record from jobs table.

    Used in: access.py
    """

    job_id: UUID
    company_id: UUID
    title: str
    status: str
    department: NotRequired[str | None]
    description: NotRequired[str | None]
    assigned_recruiter_id: NotRequired[UUID | None]
    auto_rejection_rules: NotRequired[dict[str, Any] | None]
    created_at: NotRequired[datetime | None]
    updated_at: NotRequired[datetime | None]


class StageRecordTD(TypedDict):
    """Record from pipeline_stages table.

    Used in: stages.py
    """

    stage_id: UUID
    job_id: UUID
    name: str
    position: int
    is_mandatory: bool
    is_default: bool
    parent_id: NotRequired[UUID | None]


class StageHistoryRecordTD(TypedDict):
    """Record from stage_history table.

    Used in: transitions.py
    """

    entry_id: UUID
    job_candidate_id: UUID
    stage_id: UUID
    stage_name: str
    entered_at: datetime
    exited_at: NotRequired[datetime | None]
    moved_by: NotRequired[UUID | None]
    comment: NotRequired[str | None]


"""Pydantic models for jobs, stages, pipeline moves and SLA."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

JobStatus = Literal["active", "paused", "closed"]

# ============================================
# Input Models (Stages)
# ============================================


class SubStageInput(BaseModel):
    """Sub-stage as submitted by a client; position is only an ordering hint."""

    name: str
    position: int | None = None


class StageInput(BaseModel):
    """Top-level stage as submitted by a client."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    position: int | None = None
    sub_stages: list[SubStageInput] = Field(default_factory=list, alias="subStages")


class NormalizedStage(BaseModel):
    """Stage ready to be written: sequential position, derived mandatory flag."""

    name: str
    position: int
    is_mandatory: bool = False
    is_default: bool = False
    sub_stages: list[NormalizedStage] = Field(default_factory=list)


class StageCreate(BaseModel):
    """Model for inserting a single stage into an existing job."""

    name: str
    position: int | None = None  # NULL = append at the end
    parent_id: UUID | None = None


class StagePositionUpdate(BaseModel):
    """Model for moving a stage within its sibling scope."""

    position: int


# ============================================
# Input Models (Jobs)
# ============================================


class JobCreate(BaseModel):
    """Model for creating a job."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    department: str | None = None
    description: str | None = None
    status: JobStatus = "active"
    assigned_recruiter_id: UUID | None = Field(default=None, alias="assignedRecruiterId")
    auto_rejection_rules: Any = Field(default=None, alias="autoRejectionRules")
    pipeline_stages: list[StageInput] | None = Field(default=None, alias="pipelineStages")


class JobUpdate(BaseModel):
    """Model for updating a job; only supplied fields are written."""

    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    department: str | None = None
    description: str | None = None
    status: JobStatus | None = None
    assigned_recruiter_id: UUID | None = Field(default=None, alias="assignedRecruiterId")
    auto_rejection_rules: Any = Field(default=None, alias="autoRejectionRules")
    pipeline_stages: list[StageInput] | None = Field(default=None, alias="pipelineStages")


# ============================================
# Input Models (Candidates)
# ============================================


class CandidateApply(BaseModel):
    """Model for linking a candidate to a job."""

    candidate_id: UUID


class CandidateMove(BaseModel):
    """Model for moving a candidate to another stage."""

    stage_id: UUID
    comment: str | None = None
    rejection_reason: str | None = None


class BulkMoveRequest(BaseModel):
    """Model for moving several candidates of one job to the same stage."""

    job_candidate_ids: list[UUID]
    stage_id: UUID
    comment: str | None = None


# ============================================
# Input Models (SLA)
# ============================================


class SLAThresholdInput(BaseModel):
    """One stage threshold; validated by the SLA service."""

    stage_name: str
    threshold_days: Any


class SLAConfigUpdate(BaseModel):
    """Bulk threshold update."""

    configs: list[SLAThresholdInput]


# ============================================
# Response Models
# ============================================


class StageResponse(BaseModel):
    """Response model for a stage with its sub-stages."""

    stage_id: UUID
    job_id: UUID
    name: str
    position: int
    is_mandatory: bool
    is_default: bool
    parent_id: UUID | None = None
    sub_stages: list[StageResponse] = Field(default_factory=list)


class JobResponse(BaseModel):
    """Response model for a job and its stage tree."""

    job_id: UUID
    company_id: UUID
    title: str
    department: str | None
    description: str | None
    status: str
    assigned_recruiter_id: UUID | None
    auto_rejection_rules: dict[str, Any]
    pipeline_stages: list[StageResponse]
    created_at: datetime | None
    updated_at: datetime | None
    stages_applied: bool = True


class JobsListResponse(BaseModel):
    """Response for jobs list."""

    count: int
    jobs: list[JobResponse]


class JobDeleteResponse(BaseModel):
    """Response after deleting a job."""

    status: str
    job_id: UUID


class StageDeleteResponse(BaseModel):
    """Response after deleting a stage."""

    status: str
    stage_id: UUID


class PlacementResponse(BaseModel):
    """Where a candidate ended up after an application or move."""

    job_candidate_id: UUID
    job_id: UUID
    candidate_id: UUID
    current_stage_id: UUID
    current_stage_name: str
    auto_rejected: bool = False
    rejection_reason: str | None = None


class StageHistoryEntryResponse(BaseModel):
    """One ledger entry; duration is set once the entry is closed."""

    entry_id: UUID
    stage_id: UUID
    stage_name: str
    entered_at: datetime
    exited_at: datetime | None
    duration_hours: float | None
    moved_by: UUID | None
    comment: str | None


class StageHistoryResponse(BaseModel):
    """Response for a pairing's ledger."""

    job_candidate_id: UUID
    entries: list[StageHistoryEntryResponse]


class CandidateHistoryEntryResponse(StageHistoryEntryResponse):
    """Ledger entry tagged with the job it belongs to."""

    job_candidate_id: UUID
    job_id: UUID
    job_title: str


class CandidateHistoryResponse(BaseModel):
    """Response for a candidate's ledger across every job they applied to, newest first."""

    candidate_id: UUID
    entries: list[CandidateHistoryEntryResponse]


class BulkMoveFailure(BaseModel):
    """One candidate a bulk move could not move."""

    job_candidate_id: UUID
    candidate_name: str | None = None
    error: str


class BulkMoveResponse(BaseModel):
    """Outcome of a bulk move; failures do not roll back the moves that succeeded."""

    success: bool
    moved_count: int
    failed_count: int
    failures: list[BulkMoveFailure] = Field(default_factory=list)


class AvailableStagesResponse(BaseModel):
    """Stages a candidate can be moved into."""

    job_candidate_id: UUID
    current_stage_id: UUID
    stages: list[StageResponse]


class SLABreach(BaseModel):
    """A candidate that has occupied its stage longer than the threshold."""

    job_candidate_id: UUID
    job_id: UUID
    job_title: str
    candidate_id: UUID
    candidate_name: str
    stage_name: str
    days_in_stage: int
    threshold_days: int
    days_overdue: int
    entered_at: datetime


class SLAStatusResponse(BaseModel):
    """SLA status of a single pairing."""

    job_candidate_id: UUID
    is_breached: bool
    breach: SLABreach | None = None


class SLAThresholdResponse(BaseModel):
    """Stage threshold."""

    stage_name: str
    threshold_days: int


class SLAConfigResponse(BaseModel):
    """Response for thresholds list."""

    count: int
    thresholds: list[SLAThresholdResponse]


class AlertsResponse(BaseModel):
    """Response for the alerts query."""

    sla_breaches: list[SLABreach]
    pending_feedback: list[dict[str, Any]]
    notifications_sent: int = 0

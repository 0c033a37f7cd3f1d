"""Candidate pipeline endpoints: apply, move, history and SLA status."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, status
from structlog import get_logger

from hiring_pipeline.api.deps import TemplateDep, UserDep
from hiring_pipeline.models.pipeline import (
    AvailableStagesResponse,
    BulkMoveRequest,
    BulkMoveResponse,
    CandidateApply,
    CandidateHistoryEntryResponse,
    CandidateHistoryResponse,
    CandidateMove,
    PlacementResponse,
    SLAStatusResponse,
    StageHistoryEntryResponse,
    StageHistoryResponse,
)
from hiring_pipeline.services import access, pipeline, sla, transitions

logger = get_logger()
router = APIRouter(tags=["candidates"])


@router.post(
    "/jobs/{job_id}/candidates",
    response_model=PlacementResponse,
    status_code=status.HTTP_201_CREATED,
)
async def apply_candidate(
    job_id: UUID, payload: CandidateApply, user: UserDep, template: TemplateDep
) -> PlacementResponse:
    """
    Link a candidate to a job.

    The candidate lands in the entry stage and is evaluated against the job's
    auto-rejection rules; ``auto_rejected`` tells whether it was moved straight
    to the rejection stage.
    """
    await access.require_job_access(job_id, user.user_id, user.role)
    placement = await pipeline.apply_candidate(
        job_id, payload.candidate_id, template, actor_id=user.user_id
    )
    return PlacementResponse(**placement)


@router.post("/job-candidates/{job_candidate_id}/move", response_model=PlacementResponse)
async def move_candidate(
    job_candidate_id: UUID, payload: CandidateMove, user: UserDep, template: TemplateDep
) -> PlacementResponse:
    """Move a candidate to another stage of the same job."""
    await access.require_link_access(job_candidate_id, user.user_id, user.role)
    placement = await pipeline.move_candidate(
        job_candidate_id,
        payload.stage_id,
        template,
        moved_by=user.user_id,
        rejection_reason=payload.rejection_reason,
        comment=payload.comment,
    )
    return PlacementResponse(**placement)


@router.post("/jobs/{job_id}/candidates/move", response_model=BulkMoveResponse)
async def bulk_move(
    job_id: UUID, payload: BulkMoveRequest, user: UserDep, template: TemplateDep
) -> BulkMoveResponse:
    """
    Move several candidates of a job to one stage.

    Candidates that cannot be moved are listed in ``failures``; the others are
    still moved.
    """
    await access.require_job_access(job_id, user.user_id, user.role)
    result = await pipeline.bulk_move(
        job_id,
        payload.job_candidate_ids,
        payload.stage_id,
        template,
        moved_by=user.user_id,
        comment=payload.comment,
    )
    return BulkMoveResponse(**result)


@router.get("/job-candidates/{job_candidate_id}/history", response_model=StageHistoryResponse)
async def get_history(job_candidate_id: UUID, user: UserDep) -> StageHistoryResponse:
    """Get the stage ledger of a candidate for a job, oldest first."""
    await access.require_link_access(job_candidate_id, user.user_id, user.role)
    entries = await transitions.get_stage_history(job_candidate_id)
    return StageHistoryResponse(
        job_candidate_id=job_candidate_id,
        entries=[StageHistoryEntryResponse(**entry) for entry in entries],
    )


@router.get(
    "/job-candidates/{job_candidate_id}/stages", response_model=AvailableStagesResponse
)
async def get_available_stages(job_candidate_id: UUID, user: UserDep) -> AvailableStagesResponse:
    """Get the stages a candidate can be moved into."""
    await access.require_link_access(job_candidate_id, user.user_id, user.role)
    return AvailableStagesResponse(**await pipeline.get_available_stages(job_candidate_id))


@router.get("/job-candidates/{job_candidate_id}/sla", response_model=SLAStatusResponse)
async def get_sla_status(job_candidate_id: UUID, user: UserDep) -> SLAStatusResponse:
    """Check whether a candidate is over its current stage's SLA threshold."""
    await access.require_link_access(job_candidate_id, user.user_id, user.role)
    breach = await sla.check_breach(job_candidate_id)
    return SLAStatusResponse(
        job_candidate_id=job_candidate_id, is_breached=breach is not None, breach=breach
    )


@router.get("/candidates/{candidate_id}/history", response_model=CandidateHistoryResponse)
async def get_candidate_history(candidate_id: UUID, user: UserDep) -> CandidateHistoryResponse:
    """Get a candidate's stage ledger across the jobs the caller can see, newest first."""
    visible = await access.accessible_jobs(user.user_id, user.role, user.company_id)
    entries = await transitions.get_candidate_history(
        candidate_id, user.company_id, job_ids=[job["job_id"] for job in visible]
    )
    return CandidateHistoryResponse(
        candidate_id=candidate_id,
        entries=[CandidateHistoryEntryResponse(**entry) for entry in entries],
    )

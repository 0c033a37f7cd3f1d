"""Job and stage topology endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, status
from structlog import get_logger

from hiring_pipeline.api.deps import ManagerDep, StaffDep, TemplateDep, UserDep
from hiring_pipeline.models.pipeline import (
    JobCreate,
    JobDeleteResponse,
    JobResponse,
    JobsListResponse,
    JobUpdate,
    StageCreate,
    StageDeleteResponse,
    StagePositionUpdate,
    StageResponse,
)
from hiring_pipeline.services import access
from hiring_pipeline.services import jobs as job_service
from hiring_pipeline.services import stages as stage_service

logger = get_logger()
router = APIRouter(tags=["jobs"])


# ============================================
# Jobs
# ============================================


@router.get("/jobs", response_model=JobsListResponse)
async def list_jobs(user: UserDep) -> JobsListResponse:
    """List the jobs the caller can see, newest first."""
    jobs = await job_service.list_jobs(user.user_id, user.role, user.company_id)
    return JobsListResponse(count=len(jobs), jobs=[JobResponse(**job) for job in jobs])


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(payload: JobCreate, user: StaffDep, template: TemplateDep) -> JobResponse:
    """
    Create a job in the caller's company.

    Stages default to the template set; missing mandatory stages are added.
    """
    job = await job_service.create_job(user.company_id, payload, template)
    return JobResponse(**job)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: UUID, user: UserDep) -> JobResponse:
    """Get a job with its stage tree."""
    await access.require_job_access(job_id, user.user_id, user.role)
    return JobResponse(**await job_service.get_job(job_id))


@router.put("/jobs/{job_id}", response_model=JobResponse)
async def update_job(
    job_id: UUID, payload: JobUpdate, user: StaffDep, template: TemplateDep
) -> JobResponse:
    """
    Update a job.

    ``stages_applied`` is false when a stage list was sent but ignored because
    candidates are already linked to the job.
    """
    await access.require_job_access(job_id, user.user_id, user.role)
    return JobResponse(**await job_service.update_job(job_id, payload, template))


@router.delete("/jobs/{job_id}", response_model=JobDeleteResponse)
async def delete_job(job_id: UUID, user: ManagerDep) -> JobDeleteResponse:
    """Delete a job with its stages and candidate links."""
    await access.require_job_access(job_id, user.user_id, user.role)
    await job_service.delete_job(job_id)
    return JobDeleteResponse(status="deleted", job_id=job_id)


@router.post(
    "/jobs/{job_id}/duplicate",
    response_model=JobResponse,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_job(job_id: UUID, user: StaffDep) -> JobResponse:
    """Copy a job and its stage tree."""
    await access.require_job_access(job_id, user.user_id, user.role)
    return JobResponse(**await job_service.duplicate_job(job_id))


# ============================================
# Stages
# ============================================


@router.get("/jobs/{job_id}/stages", response_model=list[StageResponse])
async def get_stages(job_id: UUID, user: UserDep) -> list[StageResponse]:
    """Get a job's stages ordered by position, sub-stages nested."""
    await access.require_job_access(job_id, user.user_id, user.role)
    tree = await stage_service.get_stage_tree(job_id)
    return [StageResponse(**stage) for stage in tree]


@router.post(
    "/jobs/{job_id}/stages",
    response_model=StageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def insert_stage(
    job_id: UUID, payload: StageCreate, user: ManagerDep, template: TemplateDep
) -> StageResponse:
    """Insert a stage (or a sub-stage when parent_id is given)."""
    await access.require_job_access(job_id, user.user_id, user.role)
    stage = await stage_service.insert_stage(
        job_id, payload.name, template, position=payload.position, parent_id=payload.parent_id
    )
    return StageResponse(**stage)


@router.put("/stages/{stage_id}/position", response_model=StageResponse)
async def reorder_stage(
    stage_id: UUID, payload: StagePositionUpdate, user: ManagerDep
) -> StageResponse:
    """Move a stage within its sibling scope."""
    await access.require_stage_access(stage_id, user.user_id, user.role)
    return StageResponse(**await stage_service.reorder_stage(stage_id, payload.position))


@router.delete("/stages/{stage_id}", response_model=StageDeleteResponse)
async def delete_stage(stage_id: UUID, user: ManagerDep) -> StageDeleteResponse:
    """Delete a non-mandatory stage."""
    await access.require_stage_access(stage_id, user.user_id, user.role)
    await stage_service.delete_stage(stage_id)
    return StageDeleteResponse(status="deleted", stage_id=stage_id)

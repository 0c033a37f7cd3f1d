"""Role and assignment based job access control."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from structlog import get_logger

from hiring_pipeline.core.database import db
from hiring_pipeline.core.errors import AuthorizationError, NotFoundError, service_boundary
from hiring_pipeline.types.database import JobRecordTD

logger = get_logger()

# Roles that see every job of their company
COMPANY_WIDE_ROLES = frozenset({"admin", "hiring_manager"})
RECRUITER_ROLE = "recruiter"

JOB_COLUMNS = """
    job_id, company_id, title, department, description, status,
    assigned_recruiter_id, auto_rejection_rules, created_at, updated_at
"""


def role_allows(role: str, user_id: UUID, assigned_recruiter_id: UUID | None) -> bool:
    """
    Role predicate for a job already known to be in the user's company.

    Unknown roles (vendor included) are denied.
    """
    if role in COMPANY_WIDE_ROLES:
        return True
    if role == RECRUITER_ROLE:
        return assigned_recruiter_id is not None and assigned_recruiter_id == user_id
    return False


def filter_jobs_by_role(
    jobs: list[dict[str, Any]], user_id: UUID, role: str
) -> list[dict[str, Any]]:
    """Keep the jobs the role/assignment predicate allows."""
    return [job for job in jobs if role_allows(role, user_id, job.get("assigned_recruiter_id"))]


@service_boundary
async def validate_access(job_id: UUID, user_id: UUID, role: str) -> bool:
    """
    Decide whether a user may view or act on a job.

    Always re-reads the job's assignment, so a reassignment takes effect on the
    next call.

    Args:
        job_id: Job UUID
        user_id: Acting user UUID
        role: Acting user's role

    Returns:
        True if allowed; False for a missing job, a missing user or a job in
        another company
    """
    row = await db.fetchrow(
        """
        SELECT j.assigned_recruiter_id, j.company_id AS job_company_id,
               u.company_id AS user_company_id
        FROM jobs j
        LEFT JOIN users u ON u.user_id = $2
        WHERE j.job_id = $1
    """,
        job_id,
        user_id,
    )

    if not row or row["user_company_id"] is None:
        return False
    if row["user_company_id"] != row["job_company_id"]:
        return False

    return role_allows(role, user_id, row["assigned_recruiter_id"])


@service_boundary
async def accessible_jobs(user_id: UUID, role: str, company_id: UUID) -> list[JobRecordTD]:
    """
    Get the company's jobs the user may see, newest first.
    """
    if role in COMPANY_WIDE_ROLES:
        rows = await db.fetch(
            f"""
            SELECT {JOB_COLUMNS} FROM jobs
            WHERE company_id = $1
            ORDER BY created_at DESC
        """,
            company_id,
        )
    elif role == RECRUITER_ROLE:
        rows = await db.fetch(
            f"""
            SELECT {JOB_COLUMNS} FROM jobs
            WHERE company_id = $1 AND assigned_recruiter_id = $2
            ORDER BY created_at DESC
        """,
            company_id,
            user_id,
        )
    else:
        rows = []

    jobs: list[JobRecordTD] = [
        {k: v for k, v in row.items()}
        for row in rows  # type: ignore[misc]
    ]
    return jobs


@service_boundary
async def require_job_access(job_id: UUID, user_id: UUID, role: str) -> None:
    """
    Raise unless the user may act on the job.

    Raises:
        NotFoundError: If the job doesn't exist
        AuthorizationError: If the user is not allowed
    """
    exists = await db.fetchval("SELECT 1 FROM jobs WHERE job_id = $1", job_id)
    if not exists:
        raise NotFoundError("Job", {"job_id": str(job_id)})

    if not await validate_access(job_id, user_id, role):
        logger.warning(
            "job_access_denied", job_id=str(job_id), user_id=str(user_id), role=role
        )
        raise AuthorizationError(context={"job_id": str(job_id)})


@service_boundary
async def require_stage_access(stage_id: UUID, user_id: UUID, role: str) -> UUID:
    """
    Resolve a stage to its job and check access to that job.

    Returns:
        The stage's job UUID
    """
    job_id = await db.fetchval("SELECT job_id FROM pipeline_stages WHERE stage_id = $1", stage_id)
    if job_id is None:
        raise NotFoundError("Stage", {"stage_id": str(stage_id)})
    await require_job_access(job_id, user_id, role)
    return job_id


@service_boundary
async def require_link_access(job_candidate_id: UUID, user_id: UUID, role: str) -> UUID:
    """
    Resolve a candidate-job pairing to its job and check access to that job.

    Returns:
        The pairing's job UUID
    """
    job_id = await db.fetchval(
        "SELECT job_id FROM job_candidates WHERE job_candidate_id = $1", job_candidate_id
    )
    if job_id is None:
        raise NotFoundError("Job candidate", {"job_candidate_id": str(job_candidate_id)})
    await require_job_access(job_id, user_id, role)
    return job_id

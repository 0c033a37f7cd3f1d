"""Job service: create, update, read, delete and duplicate jobs with their stages."""

from __future__ import annotations

from collections import defaultdict
from typing import Any
from uuid import UUID

import asyncpg
from structlog import get_logger

from hiring_pipeline.core.database import db
from hiring_pipeline.core.errors import NotFoundError, ValidationError, service_boundary
from hiring_pipeline.models.pipeline import JobCreate, JobUpdate, NormalizedStage
from hiring_pipeline.services.access import JOB_COLUMNS, accessible_jobs
from hiring_pipeline.services.rules import dump_rule_set, validate_rule_set
from hiring_pipeline.services.stages import (
    STAGE_COLUMNS,
    StageTemplate,
    build_stage_tree,
    fetch_stage_tree,
    materialize_stages,
    replace_stages,
    write_stages,
)

logger = get_logger()

# Columns a job update may write
UPDATABLE_COLUMNS = (
    "title",
    "department",
    "description",
    "status",
    "assigned_recruiter_id",
    "auto_rejection_rules",
)


def _job_dict(
    row: Any, stages: list[dict[str, Any]], stages_applied: bool = True
) -> dict[str, Any]:
    return dict(row) | {"pipeline_stages": stages, "stages_applied": stages_applied}


def _clean_title(title: str | None) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValidationError({"title": ["Title is required"]})
    return cleaned


async def _check_recruiter(
    conn: asyncpg.Connection, company_id: UUID, recruiter_id: UUID | None
) -> None:
    if recruiter_id is None:
        return
    found = await conn.fetchval(
        "SELECT 1 FROM users WHERE user_id = $1 AND company_id = $2",
        recruiter_id,
        company_id,
    )
    if not found:
        raise ValidationError(
            {"assigned_recruiter_id": ["Assigned recruiter must be a user of the same company"]}
        )


@service_boundary
async def create_job(
    company_id: UUID, payload: JobCreate, template: StageTemplate
) -> dict[str, Any]:
    """
    Create a job and materialize its stages in one transaction.

    Args:
        company_id: Owning company
        payload: Job fields, optional rule set and optional stage list
        template: Stage template

    Returns:
        Job dict with its stage tree

    Raises:
        ValidationError: Blank title, malformed rule set or stage list
        NotFoundError: If company doesn't exist
    """
    title = _clean_title(payload.title)
    rule_set = validate_rule_set(payload.auto_rejection_rules)

    async with db.transaction() as conn:
        company = await conn.fetchval(
            "SELECT 1 FROM companies WHERE company_id = $1", company_id
        )
        if not company:
            raise NotFoundError("Company", {"company_id": str(company_id)})

        await _check_recruiter(conn, company_id, payload.assigned_recruiter_id)

        row = await conn.fetchrow(
            f"""
            INSERT INTO jobs
            (company_id, title, department, description, status,
             assigned_recruiter_id, auto_rejection_rules)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING {JOB_COLUMNS}
        """,
            company_id,
            title,
            payload.department,
            payload.description,
            payload.status,
            payload.assigned_recruiter_id,
            dump_rule_set(rule_set),
        )

        await materialize_stages(conn, row["job_id"], payload.pipeline_stages, template)
        stages = await fetch_stage_tree(conn, row["job_id"])

    logger.info(
        "job_created",
        job_id=str(row["job_id"]),
        company_id=str(company_id),
        stage_count=len(stages),
        rules_enabled=bool(rule_set and rule_set.enabled),
    )
    return _job_dict(row, stages)


@service_boundary
async def update_job(
    job_id: UUID, payload: JobUpdate, template: StageTemplate
) -> dict[str, Any]:
    """
    Update a job's supplied fields and, if given, its stage set.

    Stage replacement is skipped (``stages_applied`` False) once candidates are
    linked; the other fields are still written.

    Raises:
        ValidationError: Blank title, malformed rule set or stage list
        NotFoundError: If job doesn't exist
    """
    supplied = payload.model_fields_set
    updates: dict[str, Any] = {}

    if "title" in supplied:
        updates["title"] = _clean_title(payload.title)
    for column in ("department", "description", "assigned_recruiter_id"):
        if column in supplied:
            updates[column] = getattr(payload, column)
    if "status" in supplied and payload.status is not None:
        updates["status"] = payload.status
    if "auto_rejection_rules" in supplied:
        updates["auto_rejection_rules"] = dump_rule_set(
            validate_rule_set(payload.auto_rejection_rules)
        )

    async with db.transaction() as conn:
        existing = await conn.fetchrow(
            "SELECT company_id, assigned_recruiter_id FROM jobs WHERE job_id = $1 FOR UPDATE",
            job_id,
        )
        if not existing:
            raise NotFoundError("Job", {"job_id": str(job_id)})

        if "assigned_recruiter_id" in updates:
            await _check_recruiter(conn, existing["company_id"], updates["assigned_recruiter_id"])

        if updates:
            columns = [c for c in UPDATABLE_COLUMNS if c in updates]
            assignments = ", ".join(f"{c} = ${i}" for i, c in enumerate(columns, start=2))
            await conn.execute(
                f"UPDATE jobs SET {assignments}, updated_at = NOW() WHERE job_id = $1",
                job_id,
                *(updates[c] for c in columns),
            )

        stages_applied = True
        if payload.pipeline_stages:
            stages_applied = await replace_stages(conn, job_id, payload.pipeline_stages, template)

        row = await conn.fetchrow(f"SELECT {JOB_COLUMNS} FROM jobs WHERE job_id = $1", job_id)
        stages = await fetch_stage_tree(conn, job_id)

    if (
        "assigned_recruiter_id" in updates
        and updates["assigned_recruiter_id"] != existing["assigned_recruiter_id"]
    ):
        logger.info(
            "job_recruiter_reassigned",
            job_id=str(job_id),
            assigned_recruiter_id=str(updates["assigned_recruiter_id"]),
        )

    logger.info(
        "job_updated",
        job_id=str(job_id),
        fields=sorted(updates),
        stages_applied=stages_applied,
    )
    return _job_dict(row, stages, stages_applied)


@service_boundary
async def get_job(job_id: UUID) -> dict[str, Any]:
    """
    Get a job with its stage tree.

    Raises:
        NotFoundError: If job doesn't exist
    """
    row = await db.fetchrow(f"SELECT {JOB_COLUMNS} FROM jobs WHERE job_id = $1", job_id)
    if not row:
        raise NotFoundError("Job", {"job_id": str(job_id)})
    return _job_dict(row, await fetch_stage_tree(db, job_id))


@service_boundary
async def list_jobs(user_id: UUID, role: str, company_id: UUID) -> list[dict[str, Any]]:
    """Get the jobs a user may see, newest first, each with its stage tree."""
    jobs = await accessible_jobs(user_id, role, company_id)
    if not jobs:
        return []

    rows = await db.fetch(
        f"""
        SELECT {STAGE_COLUMNS}
        FROM pipeline_stages
        WHERE job_id = ANY($1::uuid[])
        ORDER BY parent_id NULLS FIRST, position
    """,
        [job["job_id"] for job in jobs],
    )
    by_job: dict[UUID, list[Any]] = defaultdict(list)
    for row in rows:
        by_job[row["job_id"]].append(row)

    return [_job_dict(job, build_stage_tree(by_job[job["job_id"]])) for job in jobs]


@service_boundary
async def delete_job(job_id: UUID) -> None:
    """
    Delete a job; stages, links and ledger entries cascade.

    Raises:
        NotFoundError: If job doesn't exist
    """
    deleted = await db.fetchval("DELETE FROM jobs WHERE job_id = $1 RETURNING job_id", job_id)
    if not deleted:
        raise NotFoundError("Job", {"job_id": str(job_id)})
    logger.info("job_deleted", job_id=str(job_id))


@service_boundary
async def duplicate_job(job_id: UUID) -> dict[str, Any]:
    """
    Copy a job and its stage tree; the copy starts active with no candidates.

    Raises:
        NotFoundError: If job doesn't exist
    """
    async with db.transaction() as conn:
        existing = await conn.fetchrow(
            f"SELECT {JOB_COLUMNS} FROM jobs WHERE job_id = $1", job_id
        )
        if not existing:
            raise NotFoundError("Job", {"job_id": str(job_id)})

        row = await conn.fetchrow(
            f"""
            INSERT INTO jobs
            (company_id, title, department, description, status,
             assigned_recruiter_id, auto_rejection_rules)
            VALUES ($1, $2, $3, $4, 'active', $5, $6)
            RETURNING {JOB_COLUMNS}
        """,
            existing["company_id"],
            f"Copy of {existing['title']}",
            existing["department"],
            existing["description"],
            existing["assigned_recruiter_id"],
            existing["auto_rejection_rules"],
        )

        tree = await fetch_stage_tree(conn, job_id)
        await write_stages(
            conn,
            row["job_id"],
            [
                NormalizedStage(
                    name=stage["name"],
                    position=stage["position"],
                    is_mandatory=stage["is_mandatory"],
                    is_default=stage["is_default"],
                    sub_stages=[
                        NormalizedStage(
                            name=sub["name"],
                            position=sub["position"],
                            is_mandatory=sub["is_mandatory"],
                            is_default=sub["is_default"],
                        )
                        for sub in stage["sub_stages"]
                    ],
                )
                for stage in tree
            ],
        )
        stages = await fetch_stage_tree(conn, row["job_id"])

    logger.info("job_duplicated", source_job_id=str(job_id), job_id=str(row["job_id"]))
    return _job_dict(row, stages)

"""Candidate applications and stage moves, including auto-rejection."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import asyncpg
from structlog import get_logger

from hiring_pipeline.core.database import db
from hiring_pipeline.core.errors import (
    ConfigurationError,
    ConflictError,
    DomainError,
    NotFoundError,
    ValidationError,
    service_boundary,
)
from hiring_pipeline.models.rules import CandidateSnapshot
from hiring_pipeline.services.audit import record_activity
from hiring_pipeline.services.rules import evaluate, load_rule_set
from hiring_pipeline.services.stages import StageTemplate, fetch_stage_tree
from hiring_pipeline.services.transitions import record_entry

logger = get_logger()

CANDIDATE_COLUMNS = """
    candidate_id, company_id, name, experience_years, location, skills,
    education, salary_expectation
"""


def candidate_snapshot(candidate: Any) -> CandidateSnapshot:
    """Build the rule-engine view of a candidate row."""

    def _number(value: Any) -> float | None:
        return float(value) if value is not None else None

    return CandidateSnapshot(
        experience_years=_number(candidate["experience_years"]),
        location=candidate["location"],
        skills=list(candidate["skills"] or []),
        education=candidate["education"],
        salary_expectation=_number(candidate["salary_expectation"]),
    )


async def _fetch_candidate(conn: asyncpg.Connection, candidate_id: UUID) -> asyncpg.Record:
    candidate = await conn.fetchrow(
        f"SELECT {CANDIDATE_COLUMNS} FROM candidates WHERE candidate_id = $1", candidate_id
    )
    if not candidate:
        raise NotFoundError("Candidate", {"candidate_id": str(candidate_id)})
    return candidate


async def _apply_rules(
    conn: asyncpg.Connection,
    job_id: UUID,
    stored_rules: dict[str, Any] | None,
    candidate: asyncpg.Record,
    job_candidate_id: UUID,
    from_stage: dict[str, Any],
    template: StageTemplate,
    at: datetime,
) -> dict[str, Any] | None:
    """
    Evaluate the job's rule set and move the candidate to the rejection stage on a match.

    Returns:
        The rejection stage and reason if the candidate was rejected, else None
    """
    decision = evaluate(candidate_snapshot(candidate), load_rule_set(stored_rules))
    if not decision.should_reject:
        return None

    rejected = await conn.fetchrow(
        """
        SELECT stage_id, name FROM pipeline_stages
        WHERE job_id = $1 AND parent_id IS NULL AND name = $2
    """,
        job_id,
        template.rejected_stage,
    )
    if not rejected:
        logger.warning(
            "rejected_stage_missing", job_id=str(job_id), stage_name=template.rejected_stage
        )
        return None

    await conn.execute(
        """
        UPDATE job_candidates SET current_stage_id = $2, updated_at = NOW()
        WHERE job_candidate_id = $1
    """,
        job_candidate_id,
        rejected["stage_id"],
    )
    await record_entry(conn, job_candidate_id, rejected["stage_id"], at=at, comment=decision.reason)

    triggered = decision.triggered_rule
    await record_activity(
        conn,
        candidate["candidate_id"],
        "stage_change",
        decision.reason or "Auto-rejected: Does not meet minimum requirements",
        job_candidate_id=job_candidate_id,
        metadata={
            "from_stage_id": str(from_stage["stage_id"]),
            "from_stage_name": from_stage["name"],
            "to_stage_id": str(rejected["stage_id"]),
            "to_stage_name": rejected["name"],
            "auto_rejected": True,
            "rejection_reason": decision.reason,
            "triggered_rule": (
                triggered.model_dump(mode="json", by_alias=True) if triggered else None
            ),
        },
    )

    logger.info(
        "candidate_auto_rejected",
        job_candidate_id=str(job_candidate_id),
        job_id=str(job_id),
        rule_id=triggered.id if triggered else None,
    )
    return {"stage_id": rejected["stage_id"], "name": rejected["name"], "reason": decision.reason}


def _placement(
    job_candidate_id: UUID,
    job_id: UUID,
    candidate_id: UUID,
    stage: dict[str, Any],
    rejection: dict[str, Any] | None,
) -> dict[str, Any]:
    if rejection:
        return {
            "job_candidate_id": job_candidate_id,
            "job_id": job_id,
            "candidate_id": candidate_id,
            "current_stage_id": rejection["stage_id"],
            "current_stage_name": rejection["name"],
            "auto_rejected": True,
            "rejection_reason": rejection["reason"],
        }
    return {
        "job_candidate_id": job_candidate_id,
        "job_id": job_id,
        "candidate_id": candidate_id,
        "current_stage_id": stage["stage_id"],
        "current_stage_name": stage["name"],
        "auto_rejected": False,
        "rejection_reason": None,
    }


@service_boundary
async def apply_candidate(
    job_id: UUID,
    candidate_id: UUID,
    template: StageTemplate,
    actor_id: UUID | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Link a candidate to a job in the entry stage, then run auto-rejection.

    Everything happens in one transaction: the link, its first ledger entry,
    the application activity and, on a reject decision, the move to the
    rejection stage with its own ledger entry and activity.

    Args:
        job_id: Job UUID
        candidate_id: Candidate UUID
        template: Stage template (entry, evaluable and rejection stages)
        actor_id: User performing the application, if any
        now: Application instant

    Returns:
        Placement dict (current stage, auto_rejected, rejection_reason)

    Raises:
        NotFoundError: Job or candidate doesn't exist (or is in another company)
        ConflictError: Job not active, or candidate already applied
        ConfigurationError: Job has no stages
    """
    now = now or datetime.now(UTC)

    async with db.transaction() as conn:
        # FOR SHARE blocks a concurrent stage replacement for the job
        job = await conn.fetchrow(
            """
            SELECT job_id, company_id, status, auto_rejection_rules
            FROM jobs WHERE job_id = $1
            FOR SHARE
        """,
            job_id,
        )
        if not job:
            raise NotFoundError("Job", {"job_id": str(job_id)})
        if job["status"] != "active":
            raise ConflictError(
                "Job is not accepting applications",
                {"job_id": str(job_id), "status": job["status"]},
            )

        candidate = await _fetch_candidate(conn, candidate_id)
        if candidate["company_id"] != job["company_id"]:
            raise NotFoundError("Candidate", {"candidate_id": str(candidate_id)})

        already = await conn.fetchval(
            "SELECT 1 FROM job_candidates WHERE job_id = $1 AND candidate_id = $2",
            job_id,
            candidate_id,
        )
        if already:
            raise ConflictError(
                "Candidate has already applied to this job",
                {"job_id": str(job_id), "candidate_id": str(candidate_id)},
            )

        stages = await conn.fetch(
            """
            SELECT stage_id, name FROM pipeline_stages
            WHERE job_id = $1 AND parent_id IS NULL
            ORDER BY position
        """,
            job_id,
        )
        if not stages:
            raise ConfigurationError("Job has no pipeline stages", {"job_id": str(job_id)})

        entry = next((s for s in stages if s["name"] == template.entry_stage), stages[0])
        entry_stage = dict(entry)

        job_candidate_id = await conn.fetchval(
            """
            INSERT INTO job_candidates (job_id, candidate_id, current_stage_id, applied_at)
            VALUES ($1, $2, $3, $4)
            RETURNING job_candidate_id
        """,
            job_id,
            candidate_id,
            entry_stage["stage_id"],
            now,
        )

        await record_entry(conn, job_candidate_id, entry_stage["stage_id"], at=now, moved_by=actor_id)
        await record_activity(
            conn,
            candidate_id,
            "application",
            f"Applied to job, placed in {entry_stage['name']}",
            job_candidate_id=job_candidate_id,
            metadata={
                "stage_id": str(entry_stage["stage_id"]),
                "stage_name": entry_stage["name"],
            },
        )

        rejection = None
        if template.is_evaluable(entry_stage["name"]):
            rejection = await _apply_rules(
                conn,
                job_id,
                job["auto_rejection_rules"],
                candidate,
                job_candidate_id,
                entry_stage,
                template,
                now,
            )

    logger.info(
        "candidate_applied",
        job_id=str(job_id),
        candidate_id=str(candidate_id),
        job_candidate_id=str(job_candidate_id),
        auto_rejected=rejection is not None,
    )
    return _placement(job_candidate_id, job_id, candidate_id, entry_stage, rejection)


@service_boundary
async def move_candidate(
    job_candidate_id: UUID,
    stage_id: UUID,
    template: StageTemplate,
    moved_by: UUID | None = None,
    rejection_reason: str | None = None,
    comment: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Move a candidate to another stage of the same job.

    Args:
        job_candidate_id: Pairing UUID
        stage_id: Target stage (top-level or sub-stage of the job)
        template: Stage template
        moved_by: Acting user, if any
        rejection_reason: Required when the target is the rejection stage
        comment: Note stored on the ledger entry
        now: Transition instant

    Returns:
        Placement dict

    Raises:
        NotFoundError: If the pairing doesn't exist
        ValidationError: Stage not in the job, or missing rejection reason
    """
    now = now or datetime.now(UTC)

    async with db.transaction() as conn:
        link = await conn.fetchrow(
            """
            SELECT jc.job_candidate_id, jc.job_id, jc.candidate_id, jc.current_stage_id,
                   ps.name AS current_stage_name
            FROM job_candidates jc
            JOIN pipeline_stages ps ON ps.stage_id = jc.current_stage_id
            WHERE jc.job_candidate_id = $1
            FOR UPDATE OF jc
        """,
            job_candidate_id,
        )
        if not link:
            raise NotFoundError("Job candidate", {"job_candidate_id": str(job_candidate_id)})

        job_id = link["job_id"]
        new_stage = await conn.fetchrow(
            """
            SELECT stage_id, name, parent_id FROM pipeline_stages
            WHERE stage_id = $1 AND job_id = $2
        """,
            stage_id,
            job_id,
        )
        if not new_stage:
            raise ValidationError({"stage_id": ["Stage not found in this job pipeline"]})

        is_rejection = new_stage["name"].lower() == template.rejected_stage.lower()
        if is_rejection and not (rejection_reason and rejection_reason.strip()):
            raise ValidationError(
                {
                    "rejection_reason": [
                        f"Rejection reason is required when moving to {template.rejected_stage} stage"
                    ]
                }
            )

        await conn.execute(
            """
            UPDATE job_candidates SET current_stage_id = $2, updated_at = NOW()
            WHERE job_candidate_id = $1
        """,
            job_candidate_id,
            stage_id,
        )
        await record_entry(
            conn,
            job_candidate_id,
            stage_id,
            at=now,
            moved_by=moved_by,
            comment=comment or rejection_reason,
        )

        old_name = link["current_stage_name"]
        description = f"Moved from {old_name} to {new_stage['name']}"
        if rejection_reason:
            description += f". Reason: {rejection_reason}"

        await record_activity(
            conn,
            link["candidate_id"],
            "stage_change",
            description,
            job_candidate_id=job_candidate_id,
            metadata={
                "from_stage_id": str(link["current_stage_id"]),
                "from_stage_name": old_name,
                "to_stage_id": str(stage_id),
                "to_stage_name": new_stage["name"],
                "rejection_reason": rejection_reason,
                "moved_by": str(moved_by) if moved_by else None,
            },
        )

        target = dict(new_stage)
        rejection = None
        if new_stage["parent_id"] is None and template.is_evaluable(new_stage["name"]):
            rules = await conn.fetchval(
                "SELECT auto_rejection_rules FROM jobs WHERE job_id = $1", job_id
            )
            candidate = await _fetch_candidate(conn, link["candidate_id"])
            rejection = await _apply_rules(
                conn, job_id, rules, candidate, job_candidate_id, target, template, now
            )

    logger.info(
        "candidate_moved",
        job_candidate_id=str(job_candidate_id),
        from_stage=old_name,
        to_stage=new_stage["name"],
        auto_rejected=rejection is not None,
    )
    return _placement(job_candidate_id, job_id, link["candidate_id"], target, rejection)


def _failure_message(error: DomainError) -> str:
    if isinstance(error, ValidationError):
        messages = [message for field in error.fields.values() for message in field]
        if messages:
            return messages[0]
    return error.message


@service_boundary
async def bulk_move(
    job_id: UUID,
    job_candidate_ids: list[UUID],
    stage_id: UUID,
    template: StageTemplate,
    moved_by: UUID | None = None,
    comment: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Move several candidates of one job to the same stage.

    Each candidate is moved in its own transaction through ``move_candidate``,
    so one failure does not undo the others. Candidates already in the target
    stage count as moved and get no new ledger entry.

    Args:
        job_id: Job UUID every pairing must belong to
        job_candidate_ids: Pairings to move (duplicates are moved once)
        stage_id: Target stage of the job
        template: Stage template
        moved_by: Acting user, if any
        comment: Note for every move; required for the rejection stage
        now: Transition instant

    Returns:
        Dict with success, moved_count, failed_count and failures

    Raises:
        ValidationError: Empty id list, stage not in the job, or missing comment
        NotFoundError: If the job doesn't exist
    """
    if not job_candidate_ids:
        raise ValidationError(
            {"job_candidate_ids": ["At least one job candidate ID is required"]}
        )

    exists = await db.fetchval("SELECT 1 FROM jobs WHERE job_id = $1", job_id)
    if not exists:
        raise NotFoundError("Job", {"job_id": str(job_id)})

    target = await db.fetchrow(
        "SELECT stage_id, name FROM pipeline_stages WHERE stage_id = $1 AND job_id = $2",
        stage_id,
        job_id,
    )
    if not target:
        raise ValidationError({"stage_id": ["Stage not found in this job pipeline"]})

    is_rejection = target["name"].lower() == template.rejected_stage.lower()
    if is_rejection and not (comment and comment.strip()):
        raise ValidationError(
            {"comment": ["A comment is required when moving to a rejection stage"]}
        )

    requested = list(dict.fromkeys(job_candidate_ids))
    rows = await db.fetch(
        """
        SELECT jc.job_candidate_id, jc.job_id, jc.current_stage_id, c.name AS candidate_name
        FROM job_candidates jc
        JOIN candidates c ON c.candidate_id = jc.candidate_id
        WHERE jc.job_candidate_id = ANY($1::uuid[])
    """,
        requested,
    )
    links = {row["job_candidate_id"]: row for row in rows}

    moved = 0
    failures: list[dict[str, Any]] = []
    for job_candidate_id in requested:
        link = links.get(job_candidate_id)
        if link is None:
            failures.append(
                {"job_candidate_id": job_candidate_id, "error": "Job candidate not found"}
            )
            continue
        if link["job_id"] != job_id:
            failures.append(
                {
                    "job_candidate_id": job_candidate_id,
                    "candidate_name": link["candidate_name"],
                    "error": "Candidate does not belong to this job",
                }
            )
            continue
        if link["current_stage_id"] == stage_id:
            moved += 1
            continue

        try:
            await move_candidate(
                job_candidate_id,
                stage_id,
                template,
                moved_by=moved_by,
                rejection_reason=comment if is_rejection else None,
                comment=comment,
                now=now,
            )
        except DomainError as e:
            logger.warning(
                "bulk_move_candidate_failed",
                job_candidate_id=str(job_candidate_id),
                error=e.message,
            )
            failures.append(
                {
                    "job_candidate_id": job_candidate_id,
                    "candidate_name": link["candidate_name"],
                    "error": _failure_message(e),
                }
            )
        else:
            moved += 1

    logger.info(
        "bulk_move_completed",
        job_id=str(job_id),
        stage_name=target["name"],
        moved_count=moved,
        failed_count=len(failures),
    )
    return {
        "success": not failures,
        "moved_count": moved,
        "failed_count": len(failures),
        "failures": failures,
    }


@service_boundary
async def get_available_stages(job_candidate_id: UUID) -> dict[str, Any]:
    """
    Get the stage tree a candidate can be moved within.

    Raises:
        NotFoundError: If the pairing doesn't exist
    """
    link = await db.fetchrow(
        "SELECT job_id, current_stage_id FROM job_candidates WHERE job_candidate_id = $1",
        job_candidate_id,
    )
    if not link:
        raise NotFoundError("Job candidate", {"job_candidate_id": str(job_candidate_id)})

    return {
        "job_candidate_id": job_candidate_id,
        "current_stage_id": link["current_stage_id"],
        "stages": await fetch_stage_tree(db, link["job_id"]),
    }

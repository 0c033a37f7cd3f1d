"""Append-only ledger of stage occupancy per candidate-job pairing."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import asyncpg
from structlog import get_logger

from hiring_pipeline.core.database import Database, db
from hiring_pipeline.core.errors import NotFoundError, service_boundary
from hiring_pipeline.types.database import StageHistoryRecordTD

logger = get_logger()


async def record_entry(
    conn: asyncpg.Connection,
    job_candidate_id: UUID,
    stage_id: UUID,
    at: datetime | None = None,
    moved_by: UUID | None = None,
    comment: str | None = None,
) -> StageHistoryRecordTD:
    """
    Close the pairing's open entry and open a new one for ``stage_id``.

    Must run inside the caller's transaction. The link row is locked first so
    concurrent moves of the same pairing serialize; the partial unique index on
    open entries backs this up for writers outside this module.

    Args:
        conn: Connection with an open transaction
        job_candidate_id: Pairing UUID
        stage_id: Stage being entered
        at: Transition instant (defaults to now)
        moved_by: Acting user, if any
        comment: Free-text note stored on the new entry

    Returns:
        The new open entry

    Raises:
        NotFoundError: If the pairing or stage doesn't exist
    """
    at = at or datetime.now(UTC)

    link = await conn.fetchrow(
        "SELECT job_candidate_id FROM job_candidates WHERE job_candidate_id = $1 FOR UPDATE",
        job_candidate_id,
    )
    if not link:
        raise NotFoundError("Job candidate", {"job_candidate_id": str(job_candidate_id)})

    stage_name = await conn.fetchval(
        "SELECT name FROM pipeline_stages WHERE stage_id = $1", stage_id
    )
    if stage_name is None:
        raise NotFoundError("Stage", {"stage_id": str(stage_id)})

    # Clamp so a skewed clock can't produce exited_at < entered_at
    closed = await conn.execute(
        """
        UPDATE stage_history
        SET exited_at = GREATEST(entered_at, $2)
        WHERE job_candidate_id = $1 AND exited_at IS NULL
    """,
        job_candidate_id,
        at,
    )

    entry = await conn.fetchrow(
        """
        INSERT INTO stage_history
        (job_candidate_id, stage_id, stage_name, entered_at, moved_by, comment)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING entry_id, job_candidate_id, stage_id, stage_name, entered_at,
                  exited_at, moved_by, comment
    """,
        job_candidate_id,
        stage_id,
        stage_name,
        at,
        moved_by,
        comment,
    )

    logger.info(
        "stage_entry_recorded",
        job_candidate_id=str(job_candidate_id),
        stage_name=stage_name,
        closed_previous=closed != "UPDATE 0",
    )
    new_entry: StageHistoryRecordTD = {k: v for k, v in entry.items()}  # type: ignore[assignment]
    return new_entry


async def current_occupancy(
    executor: asyncpg.Connection | Database, job_candidate_id: UUID
) -> dict[str, Any]:
    """
    Stage a pairing occupies and since when.

    Falls back to the link's current stage and ``applied_at`` for pairings
    created before the ledger existed.

    Returns:
        Dict with stage_id, stage_name, entered_at, job_id, candidate_id

    Raises:
        NotFoundError: If the pairing doesn't exist
    """
    row = await executor.fetchrow(
        """
        SELECT
            jc.job_id,
            jc.candidate_id,
            jc.applied_at,
            jc.current_stage_id,
            ps.name AS current_stage_name,
            sh.stage_id AS open_stage_id,
            sh.stage_name AS open_stage_name,
            sh.entered_at AS open_entered_at
        FROM job_candidates jc
        JOIN pipeline_stages ps ON ps.stage_id = jc.current_stage_id
        LEFT JOIN stage_history sh
            ON sh.job_candidate_id = jc.job_candidate_id AND sh.exited_at IS NULL
        WHERE jc.job_candidate_id = $1
    """,
        job_candidate_id,
    )
    if not row:
        raise NotFoundError("Job candidate", {"job_candidate_id": str(job_candidate_id)})

    if row["open_entered_at"] is not None:
        return {
            "job_id": row["job_id"],
            "candidate_id": row["candidate_id"],
            "stage_id": row["open_stage_id"],
            "stage_name": row["open_stage_name"],
            "entered_at": row["open_entered_at"],
        }

    return {
        "job_id": row["job_id"],
        "candidate_id": row["candidate_id"],
        "stage_id": row["current_stage_id"],
        "stage_name": row["current_stage_name"],
        "entered_at": row["applied_at"],
    }


@service_boundary
async def current_dwell(job_candidate_id: UUID, now: datetime | None = None) -> timedelta:
    """
    Time the pairing has spent in its current stage.

    Raises:
        NotFoundError: If the pairing doesn't exist
    """
    occupancy = await current_occupancy(db, job_candidate_id)
    return (now or datetime.now(UTC)) - occupancy["entered_at"]


def _with_duration(row: Any) -> dict[str, Any]:
    entry = dict(row)
    if entry["exited_at"] is not None:
        seconds = (entry["exited_at"] - entry["entered_at"]).total_seconds()
        entry["duration_hours"] = round(seconds / 3600, 2)
    else:
        entry["duration_hours"] = None
    return entry


@service_boundary
async def get_stage_history(job_candidate_id: UUID) -> list[dict[str, Any]]:
    """
    Get a pairing's ledger, oldest first.

    Closed entries carry ``duration_hours``; the open entry has None.

    Raises:
        NotFoundError: If the pairing doesn't exist
    """
    exists = await db.fetchval(
        "SELECT 1 FROM job_candidates WHERE job_candidate_id = $1", job_candidate_id
    )
    if not exists:
        raise NotFoundError("Job candidate", {"job_candidate_id": str(job_candidate_id)})

    rows = await db.fetch(
        """
        SELECT entry_id, job_candidate_id, stage_id, stage_name, entered_at,
               exited_at, moved_by, comment
        FROM stage_history
        WHERE job_candidate_id = $1
        ORDER BY entered_at ASC, exited_at ASC NULLS LAST
    """,
        job_candidate_id,
    )

    return [_with_duration(row) for row in rows]


@service_boundary
async def get_candidate_history(
    candidate_id: UUID, company_id: UUID, job_ids: list[UUID] | None = None
) -> list[dict[str, Any]]:
    """
    Get a candidate's ledger across every job they applied to, newest first.

    Args:
        candidate_id: Candidate UUID
        company_id: Caller's company; candidates of other companies are not found
        job_ids: Restrict to these jobs (None = all of the candidate's jobs)

    Raises:
        NotFoundError: If the candidate doesn't exist in the company
    """
    exists = await db.fetchval(
        "SELECT 1 FROM candidates WHERE candidate_id = $1 AND company_id = $2",
        candidate_id,
        company_id,
    )
    if not exists:
        raise NotFoundError("Candidate", {"candidate_id": str(candidate_id)})

    rows = await db.fetch(
        """
        SELECT sh.entry_id, sh.job_candidate_id, sh.stage_id, sh.stage_name,
               sh.entered_at, sh.exited_at, sh.moved_by, sh.comment,
               jc.job_id, j.title AS job_title
        FROM stage_history sh
        JOIN job_candidates jc ON jc.job_candidate_id = sh.job_candidate_id
        JOIN jobs j ON j.job_id = jc.job_id
        WHERE jc.candidate_id = $1
          AND ($2::uuid[] IS NULL OR jc.job_id = ANY($2::uuid[]))
        ORDER BY sh.entered_at DESC, sh.exited_at DESC NULLS FIRST
    """,
        candidate_id,
        job_ids,
    )
    return [_with_duration(row) for row in rows]

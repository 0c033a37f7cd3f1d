"""Stage topology: per-job ordered stage definitions with one level of sub-stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

import asyncpg
from structlog import get_logger

from hiring_pipeline.core.config import Settings, settings
from hiring_pipeline.core.database import Database, db
from hiring_pipeline.core.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    service_boundary,
)
from hiring_pipeline.models.pipeline import NormalizedStage, StageInput, SubStageInput
from hiring_pipeline.types.database import StageRecordTD

logger = get_logger()

STAGE_COLUMNS = "stage_id, job_id, parent_id, name, position, is_mandatory, is_default"


@dataclass(frozen=True)
class StageTemplate:
    """Default stage set and the stage names the pipeline treats specially."""

    default_stages: tuple[str, ...]
    mandatory_stages: frozenset[str]
    rejected_stage: str
    entry_stage: str
    evaluable_stages: frozenset[str]

    def is_mandatory(self, name: str) -> bool:
        return name in self.mandatory_stages

    def is_evaluable(self, name: str) -> bool:
        return name in self.evaluable_stages

    def default_position(self, name: str) -> int:
        return self.default_stages.index(name)

    def canonical_name(self, name: str) -> str:
        """Template spelling of a mandatory stage name, matched case-insensitively."""
        for mandatory in self.mandatory_stages:
            if mandatory.lower() == name.lower():
                return mandatory
        return name


def get_stage_template(config: Settings = settings) -> StageTemplate:
    """Build the stage template from configuration."""
    return StageTemplate(
        default_stages=tuple(config.pipeline_default_stages),
        mandatory_stages=frozenset(config.pipeline_mandatory_stages),
        rejected_stage=config.pipeline_rejected_stage,
        entry_stage=config.pipeline_entry_stage,
        evaluable_stages=frozenset(config.pipeline_evaluable_stages),
    )


# ============================================
# Normalization (pure)
# ============================================


def _check_names(
    items: list[StageInput] | list[SubStageInput], path: str, errors: dict[str, list[str]]
) -> None:
    seen: set[str] = set()
    for i, item in enumerate(items):
        name = item.name.strip()
        if not name:
            errors[f"{path}[{i}].name"] = ["Stage name is required"]
        elif name.lower() in seen:
            errors[f"{path}[{i}].name"] = [f"Duplicate stage name: {name}"]
        seen.add(name.lower())
        if item.position is not None and item.position < 0:
            errors[f"{path}[{i}].position"] = ["Position must be non-negative"]


def _ordered(items: list[Any]) -> list[Any]:
    # Submitted positions are hints; entries without one keep their list order
    keyed = [
        (item.position if item.position is not None else index, item)
        for index, item in enumerate(items)
    ]
    return [item for _, item in sorted(keyed, key=lambda pair: pair[0])]


def normalize_stages(
    stages: list[StageInput] | None, template: StageTemplate
) -> list[NormalizedStage]:
    """
    Normalize a caller-submitted stage list.

    Mandatory names are matched case-insensitively and respelled as in the
    template. Injects missing mandatory stages at their template position,
    orders by the submitted positions (stable), then renumbers top-level stages
    0..n-1 and each parent's sub-stages 0..k-1. ``is_mandatory`` is derived
    from the stage name; any client-provided flag is ignored.

    Args:
        stages: Submitted stages (None or empty = template defaults)
        template: Stage template to normalize against

    Returns:
        Stages ready to be written

    Raises:
        ValidationError: If a name is blank/duplicated or a position negative
    """
    if not stages:
        return [
            NormalizedStage(
                name=name,
                position=i,
                is_mandatory=template.is_mandatory(name),
                is_default=True,
            )
            for i, name in enumerate(template.default_stages)
        ]

    errors: dict[str, list[str]] = {}
    _check_names(stages, "pipeline_stages", errors)
    for i, stage in enumerate(stages):
        _check_names(stage.sub_stages, f"pipeline_stages[{i}].sub_stages", errors)
    if errors:
        raise ValidationError(errors)

    submitted = [
        stage.model_copy(update={"name": template.canonical_name(stage.name.strip())})
        for stage in stages
    ]
    present = {stage.name.lower() for stage in submitted}
    for name in template.default_stages:
        if template.is_mandatory(name) and name.lower() not in present:
            # Injected stages are ordered by their template slot
            submitted.append(StageInput(name=name, position=template.default_position(name)))

    ordered = _ordered(submitted)

    return [
        NormalizedStage(
            name=stage.name,
            position=position,
            is_mandatory=template.is_mandatory(stage.name),
            is_default=True,
            sub_stages=[
                NormalizedStage(name=sub.name.strip(), position=sub_position)
                for sub_position, sub in enumerate(_ordered(stage.sub_stages))
            ],
        )
        for position, stage in enumerate(ordered)
    ]


# ============================================
# Persistence
# ============================================


async def write_stages(
    conn: asyncpg.Connection, job_id: UUID, stages: list[NormalizedStage]
) -> None:
    for stage in stages:
        stage_id = await conn.fetchval(
            """
            INSERT INTO pipeline_stages (job_id, name, position, is_mandatory, is_default)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING stage_id
        """,
            job_id,
            stage.name,
            stage.position,
            stage.is_mandatory,
            stage.is_default,
        )

        for sub in stage.sub_stages:
            await conn.execute(
                """
                INSERT INTO pipeline_stages
                (job_id, parent_id, name, position, is_mandatory, is_default)
                VALUES ($1, $2, $3, $4, $5, $6)
            """,
                job_id,
                stage_id,
                sub.name,
                sub.position,
                sub.is_mandatory,
                sub.is_default,
            )


async def materialize_stages(
    conn: asyncpg.Connection,
    job_id: UUID,
    stages: list[StageInput] | None,
    template: StageTemplate,
) -> list[NormalizedStage]:
    """
    Write a job's stage set inside the caller's transaction.

    Args:
        conn: Connection with an open transaction
        job_id: Job UUID
        stages: Submitted stages (None or empty = template defaults)
        template: Stage template

    Returns:
        The normalized stages that were written
    """
    normalized = normalize_stages(stages, template)
    await write_stages(conn, job_id, normalized)
    logger.info("stages_materialized", job_id=str(job_id), count=len(normalized))
    return normalized


async def replace_stages(
    conn: asyncpg.Connection,
    job_id: UUID,
    stages: list[StageInput] | None,
    template: StageTemplate,
) -> bool:
    """
    Delete and recreate a job's stage set, unless candidates are linked.

    The job row must already be locked by the caller so no application can slip
    in between the candidate count and the delete. Candidates are counted before
    the list is validated, so a skipped list is never validated.

    Returns:
        True if stages were replaced, False if skipped because candidates are linked

    Raises:
        ValidationError: If the list is applied and a name or position is invalid
    """
    linked = await conn.fetchval(
        "SELECT COUNT(*) FROM job_candidates WHERE job_id = $1", job_id
    )
    if linked:
        logger.warning(
            "stage_replacement_skipped", job_id=str(job_id), linked_candidates=linked
        )
        return False

    normalized = normalize_stages(stages, template)

    await conn.execute("DELETE FROM pipeline_stages WHERE job_id = $1", job_id)
    await write_stages(conn, job_id, normalized)
    logger.info("stages_replaced", job_id=str(job_id), count=len(normalized))
    return True


def build_stage_tree(rows: list[Any]) -> list[dict[str, Any]]:
    """Nest sub-stage rows under their parents; rows must be ordered by position."""
    top = [dict(row) | {"sub_stages": []} for row in rows if row["parent_id"] is None]
    by_id = {stage["stage_id"]: stage for stage in top}
    for row in rows:
        parent = by_id.get(row["parent_id"]) if row["parent_id"] is not None else None
        if parent is not None:
            parent["sub_stages"].append(dict(row) | {"sub_stages": []})
    return top


async def fetch_stage_tree(
    executor: asyncpg.Connection | Database, job_id: UUID
) -> list[dict[str, Any]]:
    """Load a job's stages as a tree, using the given connection or the pool."""
    rows = await executor.fetch(
        f"""
        SELECT {STAGE_COLUMNS}
        FROM pipeline_stages
        WHERE job_id = $1
        ORDER BY parent_id NULLS FIRST, position
    """,
        job_id,
    )
    return build_stage_tree(rows)


@service_boundary
async def get_stage_tree(job_id: UUID) -> list[dict[str, Any]]:
    """
    Get a job's top-level stages with nested sub-stages, ordered by position.

    Raises:
        NotFoundError: If job doesn't exist
    """
    exists = await db.fetchval("SELECT 1 FROM jobs WHERE job_id = $1", job_id)
    if not exists:
        raise NotFoundError("Job", {"job_id": str(job_id)})
    return await fetch_stage_tree(db, job_id)


# ============================================
# Single-stage edits
# ============================================


async def _lock_job_without_candidates(conn: asyncpg.Connection, job_id: UUID) -> None:
    job = await conn.fetchrow("SELECT job_id FROM jobs WHERE job_id = $1 FOR UPDATE", job_id)
    if not job:
        raise NotFoundError("Job", {"job_id": str(job_id)})

    linked = await conn.fetchval(
        "SELECT COUNT(*) FROM job_candidates WHERE job_id = $1", job_id
    )
    if linked:
        raise ConflictError(
            "Stages cannot be changed once candidates are linked to the job",
            {"job_id": str(job_id), "linked_candidates": linked},
        )


async def _sibling_count(
    conn: asyncpg.Connection, job_id: UUID, parent_id: UUID | None
) -> int:
    return await conn.fetchval(
        """
        SELECT COUNT(*) FROM pipeline_stages
        WHERE job_id = $1 AND parent_id IS NOT DISTINCT FROM $2
    """,
        job_id,
        parent_id,
    )


async def _fetch_stage(conn: asyncpg.Connection, stage_id: UUID) -> asyncpg.Record:
    stage = await conn.fetchrow(
        f"SELECT {STAGE_COLUMNS} FROM pipeline_stages WHERE stage_id = $1", stage_id
    )
    if not stage:
        raise NotFoundError("Stage", {"stage_id": str(stage_id)})
    return stage


@service_boundary
async def insert_stage(
    job_id: UUID,
    name: str,
    template: StageTemplate,
    position: int | None = None,
    parent_id: UUID | None = None,
) -> StageRecordTD:
    """
    Insert one stage, shifting later siblings right.

    Args:
        job_id: Job UUID
        name: Stage name
        template: Stage template (decides the mandatory flag)
        position: Target position (None or past the end = append)
        parent_id: Parent stage for a sub-stage

    Returns:
        Created stage row

    Raises:
        ValidationError: Blank/duplicate name, negative position, nested sub-stage
        NotFoundError: Job or parent stage doesn't exist
        ConflictError: Candidates are linked to the job
    """
    name = name.strip()
    if parent_id is None:
        name = template.canonical_name(name)
    if not name:
        raise ValidationError({"name": ["Stage name is required"]})
    if position is not None and position < 0:
        raise ValidationError({"position": ["Position must be non-negative"]})

    async with db.transaction() as conn:
        await _lock_job_without_candidates(conn, job_id)

        if parent_id is not None:
            parent = await conn.fetchrow(
                "SELECT parent_id FROM pipeline_stages WHERE stage_id = $1 AND job_id = $2",
                parent_id,
                job_id,
            )
            if not parent:
                raise NotFoundError("Parent stage", {"stage_id": str(parent_id)})
            if parent["parent_id"] is not None:
                raise ValidationError({"parent_id": ["Sub-stages cannot be nested"]})

        duplicate = await conn.fetchval(
            """
            SELECT 1 FROM pipeline_stages
            WHERE job_id = $1 AND parent_id IS NOT DISTINCT FROM $2 AND lower(name) = lower($3)
        """,
            job_id,
            parent_id,
            name,
        )
        if duplicate:
            raise ValidationError({"name": [f"Duplicate stage name: {name}"]})

        count = await _sibling_count(conn, job_id, parent_id)
        target = count if position is None else min(position, count)

        await conn.execute(
            """
            UPDATE pipeline_stages SET position = position + 1
            WHERE job_id = $1 AND parent_id IS NOT DISTINCT FROM $2 AND position >= $3
        """,
            job_id,
            parent_id,
            target,
        )

        row = await conn.fetchrow(
            f"""
            INSERT INTO pipeline_stages
            (job_id, parent_id, name, position, is_mandatory, is_default)
            VALUES ($1, $2, $3, $4, $5, false)
            RETURNING {STAGE_COLUMNS}
        """,
            job_id,
            parent_id,
            name,
            target,
            parent_id is None and template.is_mandatory(name),
        )

    logger.info(
        "stage_inserted",
        job_id=str(job_id),
        stage_id=str(row["stage_id"]),
        position=target,
    )
    created: StageRecordTD = {k: v for k, v in row.items()}  # type: ignore[assignment]
    return created


@service_boundary
async def reorder_stage(stage_id: UUID, new_position: int) -> StageRecordTD:
    """
    Move a stage within its sibling scope, keeping positions contiguous.

    Raises:
        ValidationError: If new_position is negative
        NotFoundError: If stage doesn't exist
        ConflictError: If candidates are linked to the job
    """
    if new_position < 0:
        raise ValidationError({"position": ["Position must be non-negative"]})

    async with db.transaction() as conn:
        stage = await _fetch_stage(conn, stage_id)
        job_id = stage["job_id"]
        parent_id = stage["parent_id"]
        await _lock_job_without_candidates(conn, job_id)

        count = await _sibling_count(conn, job_id, parent_id)
        old = stage["position"]
        new = min(new_position, count - 1)

        if new < old:
            await conn.execute(
                """
                UPDATE pipeline_stages SET position = position + 1
                WHERE job_id = $1 AND parent_id IS NOT DISTINCT FROM $2
                  AND position >= $3 AND position < $4
            """,
                job_id,
                parent_id,
                new,
                old,
            )
        elif new > old:
            await conn.execute(
                """
                UPDATE pipeline_stages SET position = position - 1
                WHERE job_id = $1 AND parent_id IS NOT DISTINCT FROM $2
                  AND position > $3 AND position <= $4
            """,
                job_id,
                parent_id,
                old,
                new,
            )

        row = await conn.fetchrow(
            f"""
            UPDATE pipeline_stages SET position = $2
            WHERE stage_id = $1
            RETURNING {STAGE_COLUMNS}
        """,
            stage_id,
            new,
        )

    logger.info("stage_reordered", stage_id=str(stage_id), old_position=old, new_position=new)
    moved: StageRecordTD = {k: v for k, v in row.items()}  # type: ignore[assignment]
    return moved


@service_boundary
async def delete_stage(stage_id: UUID) -> None:
    """
    Delete a stage (and its sub-stages), closing the gap it leaves.

    Raises:
        NotFoundError: If stage doesn't exist
        ConflictError: If the stage is mandatory or candidates are linked to the job
    """
    async with db.transaction() as conn:
        stage = await _fetch_stage(conn, stage_id)
        if stage["is_mandatory"]:
            raise ConflictError(
                f"Mandatory stage '{stage['name']}' cannot be deleted",
                {"stage_id": str(stage_id)},
            )

        job_id = stage["job_id"]
        await _lock_job_without_candidates(conn, job_id)

        await conn.execute("DELETE FROM pipeline_stages WHERE stage_id = $1", stage_id)
        await conn.execute(
            """
            UPDATE pipeline_stages SET position = position - 1
            WHERE job_id = $1 AND parent_id IS NOT DISTINCT FROM $2 AND position > $3
        """,
            job_id,
            stage["parent_id"],
            stage["position"],
        )

    logger.info("stage_deleted", stage_id=str(stage_id), job_id=str(job_id))

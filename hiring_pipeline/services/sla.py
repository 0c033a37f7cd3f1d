"""SLA monitoring: dwell-time breaches, threshold management and alert fan-out."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from structlog import get_logger

from hiring_pipeline.core.config import settings
from hiring_pipeline.core.database import db
from hiring_pipeline.core.errors import NotFoundError, ValidationError, service_boundary
from hiring_pipeline.models.pipeline import SLABreach
from hiring_pipeline.services.audit import create_notification

logger = get_logger()

SECONDS_PER_DAY = 86400
ALERT_TYPES = ("sla", "feedback", "all")
NOTIFY_ROLES = ("admin", "hiring_manager")

# Current stage and the instant it was entered; pairings without an open
# ledger entry fall back to applied_at
_OCCUPANCY_SQL = """
    SELECT
        jc.job_candidate_id,
        jc.job_id,
        j.title AS job_title,
        j.company_id,
        jc.candidate_id,
        c.name AS candidate_name,
        ps.name AS stage_name,
        COALESCE(sh.entered_at, jc.applied_at) AS entered_at
    FROM job_candidates jc
    JOIN jobs j ON j.job_id = jc.job_id
    JOIN candidates c ON c.candidate_id = jc.candidate_id
    JOIN pipeline_stages ps ON ps.stage_id = jc.current_stage_id
    LEFT JOIN stage_history sh
        ON sh.job_candidate_id = jc.job_candidate_id AND sh.exited_at IS NULL
"""


# ============================================
# Breach detection
# ============================================


def compute_breach(
    entered_at: datetime, threshold_days: int, now: datetime
) -> tuple[int, int] | None:
    """
    Compare dwell time to a threshold.

    Args:
        entered_at: When the current stage was entered
        threshold_days: Allowed days in stage
        now: Evaluation instant

    Returns:
        (days_in_stage, days_overdue) floored to whole days if strictly over
        the threshold, else None
    """
    dwell_days = (now - entered_at).total_seconds() / SECONDS_PER_DAY
    if dwell_days > threshold_days:
        return math.floor(dwell_days), math.floor(dwell_days - threshold_days)
    return None


def _to_breach(row: Any, threshold_days: int, now: datetime) -> SLABreach | None:
    result = compute_breach(row["entered_at"], threshold_days, now)
    if result is None:
        return None

    days_in_stage, days_overdue = result
    return SLABreach(
        job_candidate_id=row["job_candidate_id"],
        job_id=row["job_id"],
        job_title=row["job_title"],
        candidate_id=row["candidate_id"],
        candidate_name=row["candidate_name"],
        stage_name=row["stage_name"],
        days_in_stage=days_in_stage,
        threshold_days=threshold_days,
        days_overdue=days_overdue,
        entered_at=row["entered_at"],
    )


@service_boundary
async def check_breach(job_candidate_id: UUID, now: datetime | None = None) -> SLABreach | None:
    """
    Check whether one pairing is over its stage threshold.

    Returns:
        Breach, or None if within threshold or no threshold is configured

    Raises:
        NotFoundError: If the pairing doesn't exist
    """
    now = now or datetime.now(UTC)

    row = await db.fetchrow(
        _OCCUPANCY_SQL + " WHERE jc.job_candidate_id = $1", job_candidate_id
    )
    if not row:
        raise NotFoundError("Job candidate", {"job_candidate_id": str(job_candidate_id)})

    threshold = await db.fetchval(
        """
        SELECT threshold_days FROM sla_thresholds
        WHERE company_id = $1 AND lower(stage_name) = lower($2)
    """,
        row["company_id"],
        row["stage_name"],
    )
    if threshold is None:
        return None

    return _to_breach(row, threshold, now)


@service_boundary
async def scan(company_id: UUID, now: datetime | None = None) -> list[SLABreach]:
    """
    Find every breaching candidate on the company's active jobs.

    Returns:
        Breaches, most overdue first
    """
    now = now or datetime.now(UTC)

    thresholds = {
        row["stage_name"].lower(): row["threshold_days"]
        for row in await db.fetch(
            "SELECT stage_name, threshold_days FROM sla_thresholds WHERE company_id = $1",
            company_id,
        )
    }
    if not thresholds:
        return []

    rows = await db.fetch(
        _OCCUPANCY_SQL + " WHERE j.company_id = $1 AND j.status = 'active'", company_id
    )

    breaches = []
    for row in rows:
        threshold = thresholds.get(row["stage_name"].lower())
        if threshold is None:
            continue
        breach = _to_breach(row, threshold, now)
        if breach:
            breaches.append(breach)

    breaches.sort(key=lambda b: b.days_overdue, reverse=True)

    if breaches:
        logger.info(
            "sla_breach_detected",
            company_id=str(company_id),
            breach_count=len(breaches),
        )
    return breaches


@service_boundary
async def notify(breach: SLABreach) -> int:
    """
    Notify the assigned recruiter and the company's active admins and hiring managers.

    Each distinct user gets exactly one notification.

    Returns:
        Number of notifications created
    """
    async with db.transaction() as conn:
        job = await conn.fetchrow(
            "SELECT company_id, assigned_recruiter_id FROM jobs WHERE job_id = $1",
            breach.job_id,
        )
        if not job:
            logger.warning("sla_notify_job_missing", job_id=str(breach.job_id))
            return 0

        managers = await conn.fetch(
            """
            SELECT user_id FROM users
            WHERE company_id = $1 AND is_active = true AND role = ANY($2::text[])
            ORDER BY created_at
        """,
            job["company_id"],
            list(NOTIFY_ROLES),
        )

        recipients: dict[UUID, None] = {}
        if job["assigned_recruiter_id"]:
            recipients[job["assigned_recruiter_id"]] = None
        for user in managers:
            recipients[user["user_id"]] = None

        message = (
            f"{breach.candidate_name} has been in {breach.stage_name} for "
            f"{breach.days_in_stage} days ({breach.days_overdue} days overdue) "
            f"for {breach.job_title}"
        )
        for user_id in recipients:
            await create_notification(
                conn,
                user_id,
                "sla_breach",
                "SLA Breach Alert",
                message,
                entity_type="candidate",
                entity_id=breach.candidate_id,
            )

    logger.info(
        "sla_breach_notified",
        job_candidate_id=str(breach.job_candidate_id),
        recipients=len(recipients),
    )
    return len(recipients)


@service_boundary
async def get_alerts(
    company_id: UUID,
    alert_type: str = "all",
    send_notifications: bool = False,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Collect SLA breaches and pending-feedback alerts for a company.

    Pending feedback is owned by the interview feedback collaborator and is
    always empty here.

    Args:
        company_id: Company UUID
        alert_type: "sla", "feedback" or "all"
        send_notifications: Fan out a notification for every breach found
        now: Evaluation instant

    Raises:
        ValidationError: If alert_type is unknown
    """
    if alert_type not in ALERT_TYPES:
        raise ValidationError({"type": [f"type must be one of {', '.join(ALERT_TYPES)}"]})

    breaches: list[SLABreach] = []
    if alert_type in ("sla", "all"):
        breaches = await scan(company_id, now)

    sent = 0
    if send_notifications:
        for breach in breaches:
            sent += await notify(breach)

    return {"sla_breaches": breaches, "pending_feedback": [], "notifications_sent": sent}


# ============================================
# Threshold management
# ============================================


def _validate_threshold(
    stage_name: Any, threshold_days: Any, errors: dict[str, list[str]], prefix: str = ""
) -> None:
    if not isinstance(stage_name, str) or not stage_name.strip():
        errors[f"{prefix}stage_name"] = ["Stage name is required"]

    if threshold_days is None:
        errors[f"{prefix}threshold_days"] = ["Threshold days is required"]
    elif isinstance(threshold_days, bool) or not isinstance(threshold_days, int | float):
        errors[f"{prefix}threshold_days"] = ["Threshold days must be a number"]
    elif threshold_days < 1:
        errors[f"{prefix}threshold_days"] = ["Threshold days must be at least 1"]
    elif not float(threshold_days).is_integer():
        errors[f"{prefix}threshold_days"] = ["Threshold days must be a whole number"]


def _validated_configs(configs: list[dict[str, Any]]) -> list[tuple[str, int]]:
    errors: dict[str, list[str]] = {}
    for i, config in enumerate(configs):
        _validate_threshold(
            config.get("stage_name"), config.get("threshold_days"), errors, f"configs[{i}]."
        )
    if errors:
        raise ValidationError(errors)
    return [(c["stage_name"].strip(), int(c["threshold_days"])) for c in configs]


async def _require_company(executor: Any, company_id: UUID) -> None:
    exists = await executor.fetchval(
        "SELECT 1 FROM companies WHERE company_id = $1", company_id
    )
    if not exists:
        raise NotFoundError("Company", {"company_id": str(company_id)})


_UPSERT_THRESHOLD_SQL = """
    INSERT INTO sla_thresholds (company_id, stage_name, threshold_days)
    VALUES ($1, $2, $3)
    ON CONFLICT (company_id, lower(stage_name)) DO UPDATE SET
        threshold_days = EXCLUDED.threshold_days,
        updated_at = NOW()
    RETURNING stage_name, threshold_days
"""


@service_boundary
async def get_thresholds(company_id: UUID) -> list[dict[str, Any]]:
    """
    Get a company's stage thresholds ordered by stage name.

    Raises:
        NotFoundError: If company doesn't exist
    """
    await _require_company(db, company_id)
    rows = await db.fetch(
        """
        SELECT stage_name, threshold_days FROM sla_thresholds
        WHERE company_id = $1
        ORDER BY stage_name
    """,
        company_id,
    )
    return [dict(row) for row in rows]


@service_boundary
async def upsert_threshold(
    company_id: UUID, stage_name: str, threshold_days: Any
) -> dict[str, Any]:
    """
    Create or update one stage threshold (stage names match case-insensitively).

    Raises:
        ValidationError: Blank stage name or threshold not a whole number >= 1
        NotFoundError: If company doesn't exist
    """
    errors: dict[str, list[str]] = {}
    _validate_threshold(stage_name, threshold_days, errors)
    if errors:
        raise ValidationError(errors)

    await _require_company(db, company_id)
    row = await db.fetchrow(
        _UPSERT_THRESHOLD_SQL, company_id, stage_name.strip(), int(threshold_days)
    )

    logger.info(
        "sla_threshold_upserted",
        company_id=str(company_id),
        stage_name=row["stage_name"],
        threshold_days=row["threshold_days"],
    )
    return dict(row)


@service_boundary
async def upsert_thresholds(
    company_id: UUID, configs: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """
    Create or update several thresholds; either all are written or none.

    Raises:
        ValidationError: If any entry is invalid (keyed ``configs[i].field``)
        NotFoundError: If company doesn't exist
    """
    validated = _validated_configs(configs)

    async with db.transaction() as conn:
        await _require_company(conn, company_id)
        results = [
            dict(await conn.fetchrow(_UPSERT_THRESHOLD_SQL, company_id, name, days))
            for name, days in validated
        ]

    logger.info("sla_thresholds_upserted", company_id=str(company_id), count=len(results))
    return results


@service_boundary
async def delete_threshold(company_id: UUID, stage_name: str) -> None:
    """
    Delete a stage threshold.

    Raises:
        NotFoundError: If no threshold exists for the stage
    """
    deleted = await db.fetchval(
        """
        DELETE FROM sla_thresholds
        WHERE company_id = $1 AND lower(stage_name) = lower($2)
        RETURNING threshold_id
    """,
        company_id,
        stage_name.strip(),
    )
    if not deleted:
        raise NotFoundError("SLA configuration", {"stage_name": stage_name})

    logger.info("sla_threshold_deleted", company_id=str(company_id), stage_name=stage_name)


@service_boundary
async def get_system_defaults() -> list[dict[str, Any]]:
    """Stored system defaults, or the configured defaults when none are stored."""
    rows = await db.fetch(
        "SELECT stage_name, threshold_days FROM system_sla_defaults ORDER BY stage_name"
    )
    if rows:
        return [dict(row) for row in rows]
    return [default.model_dump() for default in settings.sla_default_thresholds]


@service_boundary
async def update_system_defaults(configs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Replace the stored system defaults.

    Raises:
        ValidationError: If any entry is invalid
    """
    validated = _validated_configs(configs)

    async with db.transaction() as conn:
        await conn.execute("DELETE FROM system_sla_defaults")
        for name, days in validated:
            await conn.execute(
                """
                INSERT INTO system_sla_defaults (stage_name, threshold_days)
                VALUES ($1, $2)
                ON CONFLICT (stage_name) DO UPDATE SET threshold_days = EXCLUDED.threshold_days
            """,
                name,
                days,
            )

    logger.info("sla_system_defaults_updated", count=len(validated))
    return [{"stage_name": name, "threshold_days": days} for name, days in validated]


@service_boundary
async def apply_defaults_to_company(company_id: UUID) -> list[dict[str, Any]]:
    """
    Replace a company's thresholds with a copy of the system defaults.

    Raises:
        NotFoundError: If company doesn't exist
    """
    defaults = await get_system_defaults()

    async with db.transaction() as conn:
        await _require_company(conn, company_id)
        await conn.execute("DELETE FROM sla_thresholds WHERE company_id = $1", company_id)
        results = [
            dict(
                await conn.fetchrow(
                    _UPSERT_THRESHOLD_SQL,
                    company_id,
                    default["stage_name"],
                    default["threshold_days"],
                )
            )
            for default in defaults
        ]

    logger.info(
        "sla_defaults_applied", company_id=str(company_id), count=len(results)
    )
    return results

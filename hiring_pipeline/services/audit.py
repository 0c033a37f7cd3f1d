"""Writers for the candidate activity log and the notifications table."""

from __future__ import annotations

from typing import Any
from uuid import UUID

import asyncpg
from structlog import get_logger

from hiring_pipeline.core.database import Database

logger = get_logger()


async def record_activity(
    executor: asyncpg.Connection | Database,
    candidate_id: UUID,
    activity_type: str,
    description: str,
    job_candidate_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
) -> UUID:
    """
    Append a candidate activity.

    Args:
        executor: Connection (to join the caller's transaction) or the pool
        candidate_id: Candidate UUID
        activity_type: e.g. "application", "stage_change"
        description: Human-readable summary
        job_candidate_id: Pairing the activity belongs to, if any
        metadata: Extra structured context

    Returns:
        Activity UUID
    """
    activity_id = await executor.fetchval(
        """
        INSERT INTO candidate_activities
        (candidate_id, job_candidate_id, activity_type, description, metadata)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING activity_id
    """,
        candidate_id,
        job_candidate_id,
        activity_type,
        description,
        metadata or {},
    )

    logger.debug(
        "activity_recorded",
        candidate_id=str(candidate_id),
        activity_type=activity_type,
    )
    return activity_id


async def create_notification(
    executor: asyncpg.Connection | Database,
    user_id: UUID,
    notification_type: str,
    title: str,
    message: str,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
) -> UUID:
    """Insert an unread notification for a user."""
    notification_id = await executor.fetchval(
        """
        INSERT INTO notifications (user_id, type, title, message, entity_type, entity_id)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING notification_id
    """,
        user_id,
        notification_type,
        title,
        message,
        entity_type,
        entity_id,
    )

    logger.info(
        "notification_created",
        user_id=str(user_id),
        notification_type=notification_type,
    )
    return notification_id

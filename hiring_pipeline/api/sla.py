"""SLA threshold and alert endpoints."""

from typing import Literal

from fastapi import APIRouter, Request
from structlog import get_logger

from hiring_pipeline.api.deps import AdminDep, UserDep
from hiring_pipeline.core.config import settings
from hiring_pipeline.middleware.rate_limit import limiter
from hiring_pipeline.models.pipeline import (
    AlertsResponse,
    SLAConfigResponse,
    SLAConfigUpdate,
    SLAThresholdResponse,
)
from hiring_pipeline.services import sla

logger = get_logger()
router = APIRouter(tags=["sla"])


def _config_response(rows: list[dict]) -> SLAConfigResponse:
    return SLAConfigResponse(
        count=len(rows), thresholds=[SLAThresholdResponse(**row) for row in rows]
    )


@router.get("/sla/config", response_model=SLAConfigResponse)
async def get_sla_config(user: UserDep) -> SLAConfigResponse:
    """Get the caller's company thresholds."""
    return _config_response(await sla.get_thresholds(user.company_id))


@router.put("/sla/config", response_model=SLAConfigResponse)
async def update_sla_config(payload: SLAConfigUpdate, user: AdminDep) -> SLAConfigResponse:
    """Create or update several thresholds at once (all or nothing)."""
    rows = await sla.upsert_thresholds(
        user.company_id, [config.model_dump() for config in payload.configs]
    )
    return _config_response(rows)


@router.delete("/sla/config/{stage_name}")
async def delete_sla_config(stage_name: str, user: AdminDep) -> dict[str, str]:
    """Remove a stage threshold."""
    await sla.delete_threshold(user.company_id, stage_name)
    return {"status": "deleted", "stage_name": stage_name}


@router.get("/sla/defaults", response_model=SLAConfigResponse)
async def get_sla_defaults(user: UserDep) -> SLAConfigResponse:
    """Get the system default thresholds."""
    return _config_response(await sla.get_system_defaults())


@router.put("/sla/defaults", response_model=SLAConfigResponse)
async def update_sla_defaults(payload: SLAConfigUpdate, user: AdminDep) -> SLAConfigResponse:
    """Replace the system default thresholds."""
    rows = await sla.update_system_defaults([config.model_dump() for config in payload.configs])
    return _config_response(rows)


@router.post("/sla/apply-defaults", response_model=SLAConfigResponse)
async def apply_sla_defaults(user: AdminDep) -> SLAConfigResponse:
    """Replace the company's thresholds with the system defaults."""
    return _config_response(await sla.apply_defaults_to_company(user.company_id))


@router.get("/alerts", response_model=AlertsResponse)
@limiter.limit(settings.alerts_rate_limit)
async def get_alerts(
    request: Request,
    user: UserDep,
    type: Literal["sla", "feedback", "all"] = "all",
    notify: bool = False,
) -> AlertsResponse:
    """
    Get SLA breaches (most overdue first) and pending feedback.

    With ``notify=true`` every breach is also fanned out as notifications.
    Rate limited: the query walks every active candidate of the company.
    """
    logger.info("alerts_requested", alert_type=type, notify=notify)
    alerts = await sla.get_alerts(user.company_id, type, send_notifications=notify)
    return AlertsResponse(**alerts)

"""Request dependencies: caller identity, role checks and the stage template."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from hiring_pipeline.core.errors import AuthorizationError
from hiring_pipeline.services.stages import StageTemplate, get_stage_template


@dataclass(frozen=True)
class CurrentUser:
    """Caller identity forwarded by the upstream gateway."""

    user_id: UUID
    role: str
    company_id: UUID


def _parse_uuid(value: str, header: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid {header} header",
        ) from e


async def get_current_user(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
    x_company_id: Annotated[str | None, Header()] = None,
) -> CurrentUser:
    """
    Read the caller identity headers.

    Raises:
        HTTPException: 401 if a header is missing or malformed
    """
    if not x_user_id or not x_user_role or not x_company_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity headers",
        )

    return CurrentUser(
        user_id=_parse_uuid(x_user_id, "X-User-ID"),
        role=x_user_role.strip().lower(),
        company_id=_parse_uuid(x_company_id, "X-Company-ID"),
    )


def require_roles(*roles: str) -> Callable[..., Awaitable[CurrentUser]]:
    """Dependency factory that only lets the given roles through."""

    async def dependency(
        user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        if user.role not in roles:
            raise AuthorizationError(
                "Your role is not allowed to perform this action",
                {"role": user.role, "allowed_roles": list(roles)},
            )
        return user

    return dependency


def get_template() -> StageTemplate:
    """Stage template built from current settings."""
    return get_stage_template()


UserDep = Annotated[CurrentUser, Depends(get_current_user)]
TemplateDep = Annotated[StageTemplate, Depends(get_template)]
ManagerDep = Annotated[CurrentUser, Depends(require_roles("admin", "hiring_manager"))]
StaffDep = Annotated[
    CurrentUser, Depends(require_roles("admin", "hiring_manager", "recruiter"))
]
AdminDep = Annotated[CurrentUser, Depends(require_roles("admin"))]

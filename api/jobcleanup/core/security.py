import hmac
import logging
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from jobcleanup.core.auth import Principal, PrincipalType, parse_bearer_token
from jobcleanup.core.config import Settings, get_settings
from jobcleanup.services.repository import RepositoryUnavailableError, get_repository

ROLE_SCOPES: dict[str, set[str]] = {
    "jobseeker": {"jobs:read"},
    "employer": {"jobs:read", "jobs:write"},
    "admin": {"jobs:read", "jobs:write", "review:read", "review:write"},
}
CRON_SCOPES = {"cleanup:run"}
PROFILE_USER_TYPES = {"job_seeker": "jobseeker", "employer": "employer", "admin": "admin"}

logger = logging.getLogger(__name__)


class CronAuthError(Exception):
    def __init__(self, status_code: int, error: str) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.error = error


async def verify_cron_secret(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not settings.cron_secret:
        logger.error("cron trigger rejected: AIJA_CRON_SECRET is not configured")
        raise CronAuthError(status.HTTP_500_INTERNAL_SERVER_ERROR, "Cron secret is not configured")

    token = parse_bearer_token(authorization)
    if token is None or not hmac.compare_digest(token.encode("utf-8"), settings.cron_secret.encode("utf-8")):
        raise CronAuthError(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    return Principal(principal_type=PrincipalType.SCHEDULER, subject="cron", scopes=set(CRON_SCOPES))


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="human auth requires bearer token",
        )

    token = parse_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    try:
        profile_user_type = await repository.get_user_type(user_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    role = _resolve_human_role(user, profile_user_type)

    return Principal(
        principal_type=PrincipalType.HUMAN,
        subject=user_id,
        role=role,
        scopes=set(ROLE_SCOPES.get(role, ROLE_SCOPES["jobseeker"])),
        actor_id=user_id,
    )


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )

    return response.json()


def _resolve_human_role(user: dict[str, Any], profile_user_type: str | None = None) -> str:
    # Elevated roles only come from profiles.user_type or app_metadata, which users cannot edit.
    profile_role = PROFILE_USER_TYPES.get(profile_user_type or "")
    app_role: str | None = None
    app_metadata = user.get("app_metadata")
    if isinstance(app_metadata, dict):
        role = app_metadata.get("role")
        if isinstance(role, str) and role in ROLE_SCOPES:
            app_role = role

    if "admin" in (profile_role, app_role):
        return "admin"
    if profile_role:
        return profile_role
    if app_role:
        return app_role

    user_metadata = user.get("user_metadata")
    if isinstance(user_metadata, dict):
        role = user_metadata.get("user_type") or user_metadata.get("role")
        if isinstance(role, str) and role in ROLE_SCOPES and role != "admin":
            return role

    return "jobseeker"

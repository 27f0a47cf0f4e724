from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from orderqueue.config.settings import AuthMode, Settings, SettingsDep


@dataclass
class Principal:
    """Owner identifiers of the caller; jobs are visible to their user or team."""

    user_id: str
    team_id: str | None = None


async def get_principal(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_team_id: str | None = Header(None, alias="X-Team-ID"),
    settings: Settings = SettingsDep,
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Returns the configured dev owner
    - dev: Trusts X-User-ID / X-Team-ID set by an authenticating proxy
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(user_id=settings.dev_user_id, team_id=settings.dev_team_id)
    elif settings.auth_mode == AuthMode.DEV:
        if not x_user_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-User-ID header is required in dev auth mode",
            )

        return Principal(user_id=x_user_id, team_id=x_team_id or None)
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


# Convenience type alias for dependency injection
PrincipalDep = Depends(get_principal)

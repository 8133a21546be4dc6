"""
API dependencies: container access, authentication and guest counters.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.container import ApplicationContainer
from core.security.tokens import TokenPayload

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ApplicationContainer:
    """Return the container built during application startup."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return container


ContainerDep = Annotated[ApplicationContainer, Depends(get_container)]


async def get_optional_user(
    container: ContainerDep,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(_bearer)],
) -> Optional[TokenPayload]:
    """
    Identity from the bearer token, or None for anonymous callers.

    A token that is present but invalid is rejected rather than treated as
    anonymous, so an expired session does not silently fall back to the
    guest allowance.
    """
    if credentials is None:
        return None

    payload = container.token_service.verify_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


async def get_current_user(
    user: Annotated[Optional[TokenPayload], Depends(get_optional_user)],
) -> TokenPayload:
    """Require an authenticated caller."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_admin_user(
    container: ContainerDep,
    current_user: Annotated[TokenPayload, Depends(get_current_user)],
) -> TokenPayload:
    """
    Require an admin caller.

    Admins are tokens with ``role=admin`` or users listed in OWNER_USER_IDS.
    """
    if not (current_user.is_admin or current_user.sub in container.settings.owner_user_ids_set):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


OptionalUser = Annotated[Optional[TokenPayload], Depends(get_optional_user)]
CurrentUser = Annotated[TokenPayload, Depends(get_current_user)]
AdminUser = Annotated[TokenPayload, Depends(get_current_admin_user)]

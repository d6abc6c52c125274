"""
FastAPI Dependencies - Current user resolution and service access.

NO DICTIONARIES - All dependencies return typed objects.

Session validation happens upstream; the identity gateway forwards the
authenticated user id in the configured header. A missing, malformed or
unknown id resolves to None and the action layer raises
AuthenticationError.
"""

from uuid import UUID

from fastapi import Depends, Request
from structlog import get_logger

from ielts_lover.api.actions import AdminActions, UserActions
from ielts_lover.config import settings
from ielts_lover.container import Container
from ielts_lover.models.domain import UserData

logger = get_logger(__name__)


def get_container(request: Request) -> Container:
    """Service graph built in the application lifespan."""
    return request.app.state.container  # type: ignore[no-any-return]


async def get_current_user(
    request: Request, container: Container = Depends(get_container)
) -> UserData | None:
    """
    Resolve the caller from the identity header.

    Usage:
        @router.get("/v1/credits/balance")
        async def balance(user: UserData | None = Depends(get_current_user)):
            ...
    """
    raw_user_id = request.headers.get(settings.auth_user_header)
    if not raw_user_id:
        return None

    try:
        user_id = UUID(raw_user_id)
    except ValueError:
        logger.warning("invalid_user_header", header=settings.auth_user_header)
        return None

    user = await container.users.get_by_id(user_id)
    if user is None:
        logger.warning("unknown_user", user_id=str(user_id))
    return user


def get_user_actions(container: Container = Depends(get_container)) -> UserActions:
    return container.user_actions


def get_admin_actions(container: Container = Depends(get_container)) -> AdminActions:
    return container.admin_actions

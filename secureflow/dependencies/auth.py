"""Authentication dependencies for FastAPI"""
from fastapi import Depends, HTTPException, Request, status, Header

from secureflow.core.config import settings
from secureflow.core.security import verify_token
from secureflow.services.commands import AnalysisCommands


def get_commands(request: Request) -> AnalysisCommands:
    """The command surface of the running application."""
    return request.app.state.services.commands


async def get_current_user(user_id: str = Header(..., alias="X-User-Id", min_length=1)) -> str:
    """
    Identity of the caller, as asserted by the fronting gateway.
    Returns:
        str: The user id
    """
    return user_id


async def require_admin(
    admin_token: str = Header(..., alias="X-Admin-Token"),
    user_id: str = Depends(get_current_user),
) -> str:
    """
    Dependency guarding privileged operations.
    Args:
        admin_token: Token from X-Admin-Token header
        user_id: Calling user
    Returns:
        str: The calling user id
    Raises:
        HTTPException: If the admin token is invalid (403 Forbidden)
    """
    if not verify_token(settings.ADMIN_TOKEN, admin_token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user_id

# backend/consultbook/api/dependencies/auth.py
"""
Authentication and authorization dependencies.

The bearer token names a user id; the directory resolves it to a
``Principal`` whose role is checked here, once, at the boundary.
"""

import asyncio
import logging
from typing import Callable

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from ...auth import get_current_user_id
from ...core.enums import RoleName
from ...core.exceptions import NotFoundException
from ...services.directory_service import DirectoryService, Principal
from .database import get_db

logger = logging.getLogger(__name__)


async def get_current_principal(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Principal:
    """Resolve the authenticated user through the directory."""
    try:
        return await asyncio.to_thread(DirectoryService(db).get_user, user_id)
    except NotFoundException:
        logger.warning("Token subject %s is not a known user", user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_capability(check: Callable[[RoleName], bool], message: str) -> Callable[..., Principal]:
    """Dependency factory rejecting principals whose role lacks a capability."""

    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not check(principal.role):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=message)
        return principal

    return dependency


require_dispute_resolver = require_capability(
    lambda role: role.may_resolve_disputes,
    "Only moderators can resolve disputes",
)

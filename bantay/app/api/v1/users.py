"""
FastAPI routes: user directory.

    POST /api/v1/users          — register (residents self-register;
                                  other roles need an admin / official)
    GET  /api/v1/users          — list (admin / official)
    GET  /api/v1/users/{id}     — one entry (self or admin / official)
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bantay.app.api.deps import get_actor, get_optional_actor, get_session_factory
from bantay.app.api.schemas import UserCreateRequest
from bantay.app.core.auth import ALERT_ISSUER_ROLES, Actor, require_role
from bantay.app.core.errors import AuthenticationError, AuthorizationError
from bantay.app.users import directory
from bantay.app.users.orm import UserRole

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.post("", status_code=201, summary="Register a directory entry")
async def register_user(
    body: UserCreateRequest,
    actor: Optional[Actor] = Depends(get_optional_actor),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Dict[str, Any]:
    if body.role != UserRole.RESIDENT.value:
        if actor is None:
            raise AuthenticationError()
        require_role(actor, ALERT_ISSUER_ROLES, f"register {body.role} accounts")
    user = await directory.register_user(factory, **body.model_dump())
    return user.to_dict()


@router.get("", summary="List directory entries")
async def list_users(
    active_only: bool = Query(False),
    role: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Dict[str, Any]:
    require_role(actor, ALERT_ISSUER_ROLES, "list users")
    async with factory() as session:
        users = await directory.list_users(session, active_only=active_only, role=role)
    return {"count": len(users), "users": [u.to_dict() for u in users]}


@router.get("/{user_id}", summary="Get a directory entry")
async def get_user(
    user_id: str,
    actor: Actor = Depends(get_actor),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Dict[str, Any]:
    if actor.user_id != user_id and not actor.has_role(ALERT_ISSUER_ROLES):
        raise AuthorizationError("view other users", actor.role)
    async with factory() as session:
        user = await directory.get_user(session, user_id)
    return user.to_dict()

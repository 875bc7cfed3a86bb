"""
FastAPI dependencies: services from app.state and the acting user.

The acting user comes from the X-User-Id header set by the gateway after
it has authenticated the caller; here it is only resolved against the
directory and turned into an Actor.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bantay.app.alerts.alert_service import AlertService
from bantay.app.core.auth import Actor
from bantay.app.core.errors import AuthenticationError, NotFoundError
from bantay.app.rescue.service import RescueRequestService
from bantay.app.users import directory


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


def get_alert_service(request: Request) -> AlertService:
    return request.app.state.alert_service


def get_rescue_service(request: Request) -> RescueRequestService:
    return request.app.state.rescue_service


async def _resolve_actor(factory: async_sessionmaker[AsyncSession], user_id: str) -> Actor:
    async with factory() as session:
        try:
            user = await directory.get_user(session, user_id)
        except NotFoundError:
            raise AuthenticationError("Unknown user") from None
    if not user.is_active:
        raise AuthenticationError("User is deactivated")
    return Actor(user_id=user.id, role=user.role, name=user.name)


async def get_actor(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Actor:
    if not x_user_id:
        raise AuthenticationError()
    return await _resolve_actor(factory, x_user_id)


async def get_optional_actor(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Optional[Actor]:
    if not x_user_id:
        return None
    return await _resolve_actor(factory, x_user_id)

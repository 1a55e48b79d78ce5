"""FastAPI dependencies for sessions, clock, payment gateway and requester identity."""

from typing import AsyncGenerator, Optional

from fastapi import Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .clock import Clock, system_clock
from .config import Settings, settings
from .database import async_session_factory, get_async_session
from .exceptions import ValidationError


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency that provides async database sessions.

    Yields:
        AsyncSession: Database session
    """
    async for session in get_async_session():
        yield session


def get_session_factory() -> async_sessionmaker:
    """Session factory for services that own their transactions."""
    return async_session_factory


def get_clock() -> Clock:
    return system_clock


def get_settings() -> Settings:
    return settings


def get_payment_gateway(request: Request):
    """Payment gateway created by the application lifespan."""
    return request.app.state.payment_gateway


async def get_member_id(
    x_member_id: Optional[str] = Header(None, alias="X-Member-Id")
) -> Optional[str]:
    """
    Requester identity forwarded by the upstream gateway.

    Authentication happens before requests reach this service; the header
    only carries the already verified member reference.
    """
    if x_member_id:
        x_member_id = x_member_id.strip()
    return x_member_id or None


def resolve_requester(body_requester_id: Optional[str], header_member_id: Optional[str]) -> str:
    """
    Pick the requester from the X-Member-Id header, falling back to the body.

    The header carries the identity verified upstream, so a body value never
    overrides it.

    Raises:
        ValidationError: If neither carries a member reference
    """
    requester_id = header_member_id or body_requester_id
    if not requester_id:
        raise ValidationError(
            detail="A requester is required, either as requester_id or the X-Member-Id header",
            errors={"requester_id": "required"},
        )
    return requester_id

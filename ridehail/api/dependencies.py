"""FastAPI dependency injection helpers."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request

from ridehail.domain.entities import Identity
from ridehail.domain.enums import ActorRole
from ridehail.domain.errors import Unauthorized
from ridehail.services.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_identity(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Identity:
    """Identity verified upstream by the auth gateway and forwarded in headers."""
    if not x_actor_id or not x_actor_role:
        raise Unauthorized("Missing caller identity")
    try:
        return Identity(actor_id=int(x_actor_id), role=ActorRole(x_actor_role))
    except ValueError:
        raise Unauthorized("Malformed caller identity") from None


async def require_rider(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_rider:
        raise Unauthorized("Only riders may perform this action")
    return identity


async def require_driver(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_driver:
        raise Unauthorized("Only drivers may perform this action")
    return identity

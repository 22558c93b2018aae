"""Caller identity for delivery endpoints.

Authentication happens upstream: the gateway in front of this service
verifies the session and forwards the caller as two headers. This module
turns them into an Actor and rejects requests that lack them.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header

from locofit.api.middleware.errors import AuthenticationError
from locofit.db.models.base import ActorRole
from locofit.services.authz import Actor

logger = logging.getLogger(__name__)

ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"


async def get_current_actor(
    x_actor_id: Annotated[str | None, Header(alias=ACTOR_ID_HEADER)] = None,
    x_actor_role: Annotated[str | None, Header(alias=ACTOR_ROLE_HEADER)] = None,
) -> Actor:
    """Dependency resolving the calling actor from gateway headers.

    Raises:
        AuthenticationError: If either header is missing or malformed.
    """
    if not x_actor_id or not x_actor_role:
        raise AuthenticationError()

    try:
        actor_id = UUID(x_actor_id)
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError:
        logger.warning(
            "Rejected malformed actor headers",
            extra={"actor_id": x_actor_id, "actor_role": x_actor_role},
        )
        raise AuthenticationError("Invalid caller identity") from None

    return Actor(actor_id=actor_id, role=role)


CurrentActor = Annotated[Actor, Depends(get_current_actor)]

"""
Shared FastAPI dependencies for the route modules.
"""
from typing import Optional
import logging

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_session
from ..models import QuoteKind, utcnow
from ..ratelimit import client_ip
from ..services.lifecycle import ActorContext, QuoteLifecycleService

logger = logging.getLogger(__name__)

KIND_SLUGS = {
    "empty-leg": QuoteKind.EMPTY_LEG,
    "charter": QuoteKind.CHARTER,
}


def get_clock():
    """Time source for the services a request builds."""
    return utcnow


async def get_actor(
    request: Request,
    authorization: Optional[str] = Header(None),
    actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
) -> ActorContext:
    """Explicit per-request caller context; the credential is passed through unverified."""
    credential = None
    if authorization and authorization.lower().startswith("bearer "):
        credential = authorization[7:].strip() or None
    return ActorContext(actor_id=actor_id, ip_address=client_ip(request), credential=credential)


async def get_lifecycle(
    session: AsyncSession = Depends(get_session),
    clock=Depends(get_clock),
) -> QuoteLifecycleService:
    return QuoteLifecycleService(session, clock=clock)


def resolve_kind(kind: str) -> QuoteKind:
    try:
        return KIND_SLUGS[kind]
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "NOT_FOUND", "message": f"Unknown quote kind '{kind}'"},
        )


def wake_dispatcher(request: Request) -> None:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is not None:
        dispatcher.wake()


def internal_error(action: str, exc: Exception) -> HTTPException:
    logger.error(f"Error while trying to {action}: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "INTERNAL_ERROR", "message": f"Failed to {action}"},
    )

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.requests import HTTPConnection
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wishsync.core.logger import get_logger
from wishsync.core.security import user_id_from_token
from wishsync.db.session import get_db
from wishsync.models.models import User
from wishsync.realtime.manager import BroadcastHub
from wishsync.services.reservations import ReservationEngine


DbSessionDep = Annotated[AsyncSession, Depends(get_db)]
logger = get_logger("auth")


def bearer_token(conn: HTTPConnection) -> str | None:
    auth_header = conn.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.removeprefix("Bearer ").strip()
    return conn.query_params.get("token")


async def load_user(db: AsyncSession, token: str | None) -> User | None:
    user_id = user_id_from_token(token)
    if user_id is None:
        return None
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_current_user(request: Request, db: DbSessionDep) -> User:
    token = bearer_token(request)
    if not token:
        logger.info("Auth token missing path=%s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = await load_user(db, token)
    if user is None:
        logger.info("Auth token rejected path=%s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user


def get_hub(conn: HTTPConnection) -> BroadcastHub:
    return conn.app.state.hub


def get_reservation_engine(
    db: DbSessionDep,
    hub: BroadcastHub = Depends(get_hub),
) -> ReservationEngine:
    return ReservationEngine(db, hub)


CurrentUserDep = Annotated[User, Depends(get_current_user)]
HubDep = Annotated[BroadcastHub, Depends(get_hub)]
EngineDep = Annotated[ReservationEngine, Depends(get_reservation_engine)]

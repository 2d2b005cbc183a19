from typing import Annotated

from fastapi import APIRouter, Path, Request

from wishsync.api.deps import CurrentUserDep, DbSessionDep, EngineDep
from wishsync.core.audit import AuditAction, audit_log
from wishsync.core.logger import get_logger
from wishsync.core.metrics import service_metrics
from wishsync.core.rate_limit import check_rate_limit
from wishsync.realtime.snapshots import load_wishlist_state, render_snapshot
from wishsync.schemas.wishlist import (
    ROW_ID_MAX,
    ItemsReplaceRequest,
    ReservationResponse,
    ReservationStatus,
    WishlistPublic,
)
from wishsync.services.reservations import ReserveOutcome
from wishsync.services.wishlists import get_own_state, get_state_by_share_id

router = APIRouter(prefix="/wishlist", tags=["wishlist"])
logger = get_logger("wishlists")

ItemIdPath = Annotated[int, Path(ge=1, le=ROW_ID_MAX)]


@router.get("", response_model=WishlistPublic)
async def get_my_wishlist(db: DbSessionDep, current_user: CurrentUserDep) -> WishlistPublic:
    user_id = current_user.id
    state, created = await get_own_state(db, user_id)
    if created:
        audit_log(AuditAction.WISHLIST_CREATE, user_id=user_id, details={"share_id": state.share_id})
    return render_snapshot(state, user_id)


@router.put("/items", response_model=WishlistPublic)
async def replace_items(
    payload: ItemsReplaceRequest,
    request: Request,
    db: DbSessionDep,
    engine: EngineDep,
    current_user: CurrentUserDep,
) -> WishlistPublic:
    user_id = current_user.id
    check_rate_limit(request, "items_replace", subject=user_id)
    summary = await engine.replace_items(user_id, payload.items)
    audit_log(
        AuditAction.ITEMS_REPLACE,
        request=request,
        user_id=user_id,
        details={"created": summary.created, "updated": summary.updated, "deleted": summary.deleted},
    )
    state = await load_wishlist_state(db, share_id=summary.share_id)
    return render_snapshot(state, user_id)


@router.post("/items/{item_id}/reserve", response_model=ReservationResponse)
async def reserve_item(
    item_id: ItemIdPath,
    request: Request,
    engine: EngineDep,
    current_user: CurrentUserDep,
) -> ReservationResponse:
    user_id = current_user.id
    check_rate_limit(request, "reservation", subject=user_id)
    outcome = await engine.reserve(item_id, user_id)
    service_metrics.record_reservation(outcome.value)
    if outcome is ReserveOutcome.RESERVED:
        audit_log(AuditAction.ITEM_RESERVE, request=request, user_id=user_id, details={"item_id": item_id})
        return ReservationResponse(item_id=item_id, status=ReservationStatus.RESERVED)
    return ReservationResponse(item_id=item_id, status=ReservationStatus.ALREADY_RESERVED)


@router.delete("/items/{item_id}/reserve", response_model=ReservationResponse)
async def cancel_reservation(
    item_id: ItemIdPath,
    request: Request,
    engine: EngineDep,
    current_user: CurrentUserDep,
) -> ReservationResponse:
    user_id = current_user.id
    check_rate_limit(request, "reservation", subject=user_id)
    await engine.cancel(item_id, user_id)
    service_metrics.record_reservation(ReservationStatus.CANCELLED.value)
    audit_log(AuditAction.RESERVATION_CANCEL, request=request, user_id=user_id, details={"item_id": item_id})
    return ReservationResponse(item_id=item_id, status=ReservationStatus.CANCELLED)


@router.get("/{share_id}", response_model=WishlistPublic)
async def get_wishlist_by_share_id(
    share_id: str,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> WishlistPublic:
    state = await get_state_by_share_id(db, share_id)
    return render_snapshot(state, current_user.id)

"""Viewer-scoped wishlist snapshots.

Loading and rendering are split: the broadcast hub loads the rows once per
publish and renders them separately for every subscribed viewer, because the
owner and the guests see different reservation details.
"""

import json
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from wishsync.core.logger import get_logger
from wishsync.models.models import Item, User, Wishlist
from wishsync.schemas.wishlist import ItemPublic, UserBrief, WishlistPublic

logger = get_logger("snapshots")


@dataclass
class WishlistState:
    wishlist: Wishlist
    owner: User
    # (item, reserver) pairs ordered by item id
    items: list[tuple[Item, User | None]] = field(default_factory=list)

    @property
    def share_id(self) -> str:
        return self.wishlist.share_id


class SnapshotAssembler(Protocol):
    async def load(self, db: AsyncSession, share_id: str) -> WishlistState | None: ...

    def render(self, state: WishlistState, viewer_id: int | None) -> WishlistPublic: ...


def decode_media(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        decoded = json.loads(raw)
    except ValueError:
        logger.warning("Undecodable media column value, treating as empty")
        return []
    if not isinstance(decoded, list):
        return []
    return [str(value) for value in decoded if value]


def encode_media(values: list[str]) -> str:
    return json.dumps(list(values), ensure_ascii=False)


def _brief(user: User) -> UserBrief:
    return UserBrief(
        id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        username=user.username,
        photo_url=user.photo_url,
    )


async def load_wishlist_state(
    db: AsyncSession,
    *,
    share_id: str | None = None,
    wishlist_id: int | None = None,
) -> WishlistState | None:
    stmt = select(Wishlist, User).join(User, Wishlist.created_by == User.id)
    if share_id is not None:
        stmt = stmt.where(Wishlist.share_id == share_id)
    elif wishlist_id is not None:
        stmt = stmt.where(Wishlist.id == wishlist_id)
    else:
        raise ValueError("share_id or wishlist_id is required")

    # Rows may already sit in the identity map with pre-commit values.
    result = await db.execute(stmt.execution_options(populate_existing=True))
    row = result.first()
    if row is None:
        return None
    wishlist, owner = row

    reserver = aliased(User)
    items_result = await db.execute(
        select(Item, reserver)
        .outerjoin(reserver, Item.reserved_by == reserver.id)
        .where(Item.wishlist_id == wishlist.id)
        .order_by(Item.id)
        .execution_options(populate_existing=True)
    )
    items = [(item, reserved_by) for item, reserved_by in items_result.all()]
    return WishlistState(wishlist=wishlist, owner=owner, items=items)


def render_snapshot(state: WishlistState, viewer_id: int | None) -> WishlistPublic:
    is_owner = viewer_id is not None and viewer_id == state.owner.id
    items: list[ItemPublic] = []
    for item, reserver in state.items:
        is_reserved = item.reserved_at is not None
        items.append(
            ItemPublic(
                id=item.id,
                text=item.text or "",
                links=decode_media(item.links),
                photos=decode_media(item.photos),
                created_by=item.created_by,
                created_at=item.created_at,
                updated_at=item.updated_at,
                reserved_at=item.reserved_at,
                is_reserved=is_reserved,
                # The owner never learns who reserved what.
                reserved_by=_brief(reserver) if reserver is not None and is_reserved and not is_owner else None,
            )
        )
    return WishlistPublic(
        id=state.wishlist.id,
        share_id=state.wishlist.share_id,
        title=state.wishlist.title,
        created_at=state.wishlist.created_at,
        updated_at=state.wishlist.updated_at,
        created_by=_brief(state.owner),
        items=items,
    )


class SqlSnapshotAssembler:
    """Full-snapshot assembler backed by the relational store."""

    async def load(self, db: AsyncSession, share_id: str) -> WishlistState | None:
        return await load_wishlist_state(db, share_id=share_id)

    def render(self, state: WishlistState, viewer_id: int | None) -> WishlistPublic:
        return render_snapshot(state, viewer_id)

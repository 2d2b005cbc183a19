import secrets

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wishsync.core.config import settings
from wishsync.core.errors import NotFound
from wishsync.core.logger import get_logger
from wishsync.db.session import transaction
from wishsync.models.models import Wishlist
from wishsync.realtime.snapshots import WishlistState, load_wishlist_state

logger = get_logger("wishlists")


def generate_share_id() -> str:
    # Random, never derived from the numeric id.
    return secrets.token_hex(8)


async def get_owned_wishlist(db: AsyncSession, owner_id: int) -> Wishlist | None:
    result = await db.execute(select(Wishlist).where(Wishlist.created_by == owner_id))
    return result.scalar_one_or_none()


async def get_or_create_wishlist(db: AsyncSession, owner_id: int) -> tuple[Wishlist, bool]:
    """Return the owner's list, creating it on first access."""
    wishlist = await get_owned_wishlist(db, owner_id)
    if wishlist is not None:
        return wishlist, False

    try:
        async with transaction(db):
            wishlist = Wishlist(
                share_id=generate_share_id(),
                title=settings.default_wishlist_title,
                created_by=owner_id,
            )
            db.add(wishlist)
    except IntegrityError:
        # A concurrent request created it first (created_by is unique).
        logger.info("Wishlist creation raced for owner=%s, reloading", owner_id)
        wishlist = await get_owned_wishlist(db, owner_id)
        if wishlist is None:
            raise
        return wishlist, False

    logger.info("Created wishlist id=%s owner=%s", wishlist.id, owner_id)
    return wishlist, True


async def get_own_state(db: AsyncSession, owner_id: int) -> tuple[WishlistState, bool]:
    wishlist, created = await get_or_create_wishlist(db, owner_id)
    state = await load_wishlist_state(db, wishlist_id=wishlist.id)
    if state is None:
        raise NotFound("Wishlist not found")
    return state, created


async def get_state_by_share_id(db: AsyncSession, share_id: str) -> WishlistState:
    state = await load_wishlist_state(db, share_id=share_id)
    if state is None:
        raise NotFound("Wishlist not found")
    return state

"""Reservation state machine and owner item edits.

An item is either unreserved or reserved by exactly one non-owner user. All
writes are conditional updates so that two racing requests cannot both win:
the loser re-reads the row and reports what it found.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wishsync.core.errors import Conflict, Forbidden, NotFound
from wishsync.core.logger import get_logger
from wishsync.db.session import transaction
from wishsync.models.models import Item, Wishlist, utcnow
from wishsync.realtime.snapshots import encode_media
from wishsync.schemas.wishlist import ItemInput

logger = get_logger("reservations")


class Publisher(Protocol):
    async def publish(self, db: AsyncSession, share_id: str, actor_id: int | None = None) -> int: ...


class ReserveOutcome(str, Enum):
    RESERVED = "reserved"
    ALREADY_RESERVED = "already_reserved"


@dataclass
class ReplaceSummary:
    share_id: str
    created: int
    updated: int
    deleted: int


@dataclass
class _ItemRow:
    item_id: int
    owner_id: int
    share_id: str
    reserved_by: int | None


class ReservationEngine:
    def __init__(self, db: AsyncSession, publisher: Publisher) -> None:
        self._db = db
        self._publisher = publisher

    async def _load_item(self, item_id: int) -> _ItemRow:
        result = await self._db.execute(
            select(Item.id, Wishlist.created_by, Wishlist.share_id, Item.reserved_by)
            .join(Wishlist, Item.wishlist_id == Wishlist.id)
            .where(Item.id == item_id)
        )
        row = result.first()
        if row is None:
            raise NotFound("Item not found")
        return _ItemRow(item_id=row[0], owner_id=row[1], share_id=row[2], reserved_by=row[3])

    async def _broadcast(self, share_id: str, actor_id: int) -> None:
        await self._publisher.publish(self._db, share_id, actor_id=actor_id)

    async def reserve(self, item_id: int, requester_id: int) -> ReserveOutcome:
        async with transaction(self._db):
            row = await self._load_item(item_id)
            if row.owner_id == requester_id:
                raise Forbidden("Owner cannot reserve own item")
            if row.reserved_by == requester_id:
                return ReserveOutcome.ALREADY_RESERVED
            if row.reserved_by is not None:
                raise Conflict("Item already reserved")

            result = await self._db.execute(
                update(Item)
                .where(Item.id == item_id, Item.reserved_by.is_(None))
                .values(reserved_by=requester_id, reserved_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = await self._load_item(item_id)
                if current.reserved_by == requester_id:
                    return ReserveOutcome.ALREADY_RESERVED
                raise Conflict("Item already reserved")

        logger.info("Item reserved item=%s user=%s share_id=%s", item_id, requester_id, row.share_id)
        await self._broadcast(row.share_id, requester_id)
        return ReserveOutcome.RESERVED

    async def cancel(self, item_id: int, requester_id: int) -> None:
        async with transaction(self._db):
            row = await self._load_item(item_id)
            self._check_cancel(row, requester_id)

            result = await self._db.execute(
                update(Item)
                .where(Item.id == item_id, Item.reserved_by == requester_id)
                .values(reserved_by=None, reserved_at=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self._check_cancel(await self._load_item(item_id), requester_id)
                raise Conflict("Item is not reserved")

        logger.info("Reservation cancelled item=%s user=%s share_id=%s", item_id, requester_id, row.share_id)
        await self._broadcast(row.share_id, requester_id)

    @staticmethod
    def _check_cancel(row: _ItemRow, requester_id: int) -> None:
        if row.owner_id == requester_id:
            raise Forbidden("Owner cannot manage reservations")
        if row.reserved_by is None:
            raise Conflict("Item is not reserved")
        if row.reserved_by != requester_id:
            raise Forbidden("Item is reserved by another user")

    async def replace_items(self, requester_id: int, incoming: Sequence[ItemInput]) -> ReplaceSummary:
        """Replace the requester's own item set."""
        result = await self._db.execute(select(Wishlist.id).where(Wishlist.created_by == requester_id))
        wishlist_id = result.scalar_one_or_none()
        if wishlist_id is None:
            raise Forbidden("Only the owner can edit a wishlist")
        return await self.replace_items_for(wishlist_id, requester_id, incoming)

    async def replace_items_for(
        self,
        wishlist_id: int,
        requester_id: int,
        incoming: Sequence[ItemInput],
    ) -> ReplaceSummary:
        entries = [entry for entry in incoming if not entry.is_blank()]

        async with transaction(self._db):
            result = await self._db.execute(
                select(Wishlist.created_by, Wishlist.share_id).where(Wishlist.id == wishlist_id)
            )
            owner_row = result.first()
            if owner_row is None:
                raise NotFound("Wishlist not found")
            owner_id, share_id = owner_row
            if owner_id != requester_id:
                raise Forbidden("Only the owner can edit a wishlist")

            existing_result = await self._db.execute(select(Item.id).where(Item.wishlist_id == wishlist_id))
            existing_ids = set(existing_result.scalars().all())

            kept = [entry for entry in entries if entry.id is not None and entry.id in existing_ids]
            fresh = [entry for entry in entries if entry.id is None or entry.id not in existing_ids]
            kept_ids = {entry.id for entry in kept}
            to_delete = existing_ids - kept_ids

            now = utcnow()
            if to_delete:
                await self._db.execute(
                    delete(Item)
                    .where(Item.id.in_(to_delete))
                    .execution_options(synchronize_session=False)
                )
            for entry in kept:
                await self._db.execute(
                    update(Item)
                    .where(Item.id == entry.id, Item.wishlist_id == wishlist_id)
                    .values(
                        text=entry.text or "",
                        links=encode_media(entry.links),
                        photos=encode_media(entry.photos),
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
            for entry in fresh:
                self._db.add(
                    Item(
                        text=entry.text or "",
                        links=encode_media(entry.links),
                        photos=encode_media(entry.photos),
                        created_by=requester_id,
                        wishlist_id=wishlist_id,
                        created_at=now,
                        updated_at=now,
                    )
                )
            await self._db.execute(
                update(Wishlist)
                .where(Wishlist.id == wishlist_id)
                .values(updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await self._db.flush()

        summary = ReplaceSummary(
            share_id=share_id,
            created=len(fresh),
            updated=len(kept),
            deleted=len(to_delete),
        )
        logger.info(
            "Items replaced wishlist=%s created=%s updated=%s deleted=%s",
            wishlist_id,
            summary.created,
            summary.updated,
            summary.deleted,
        )
        await self._broadcast(share_id, requester_id)
        return summary

"""
Reservation engine tests against a real SQLite database.
Covers: reserve, cancel, racing guests, atomic item replacement.
"""
import asyncio

import pytest
from sqlalchemy import select

from wishsync.core.errors import Conflict, Forbidden, NotFound
from wishsync.models.models import Item, User, Wishlist
from wishsync.schemas.wishlist import ItemInput
from wishsync.services import reservations as reservations_module
from wishsync.services.reservations import ReservationEngine, ReserveOutcome

OWNER_ID = 1001
GUEST_ID = 2002
OTHER_GUEST_ID = 3003


class RecordingPublisher:
    def __init__(self) -> None:
        self.calls: list[tuple[str, int | None]] = []

    async def publish(self, db, share_id: str, actor_id: int | None = None) -> int:
        self.calls.append((share_id, actor_id))
        return 0


async def seed(session_factory, texts=("A", "B", "C")) -> tuple[str, list[int]]:
    async with session_factory() as db:
        for user_id, name in ((OWNER_ID, "Owner"), (GUEST_ID, "Guest"), (OTHER_GUEST_ID, "Other")):
            db.add(User(id=user_id, first_name=name))
        wishlist = Wishlist(share_id="a1b2c3d4e5f60718", title="My Wishlist", created_by=OWNER_ID)
        db.add(wishlist)
        await db.flush()
        items = [Item(text=text, created_by=OWNER_ID, wishlist_id=wishlist.id) for text in texts]
        db.add_all(items)
        await db.commit()
        return wishlist.share_id, [item.id for item in items]


async def read_items(session_factory) -> list[Item]:
    async with session_factory() as db:
        result = await db.execute(select(Item).order_by(Item.id))
        return list(result.scalars().all())


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


# ── Reserve ───────────────────────────────────────────────────────────────────

class TestReserve:
    @pytest.mark.anyio
    async def test_guest_reserves_free_item(self, session_factory, publisher):
        share_id, item_ids = await seed(session_factory)
        async with session_factory() as db:
            outcome = await ReservationEngine(db, publisher).reserve(item_ids[0], GUEST_ID)

        assert outcome is ReserveOutcome.RESERVED
        item = (await read_items(session_factory))[0]
        assert item.reserved_by == GUEST_ID
        assert item.reserved_at is not None
        assert publisher.calls == [(share_id, GUEST_ID)]

    @pytest.mark.anyio
    async def test_owner_cannot_reserve_free_item(self, session_factory, publisher):
        _, item_ids = await seed(session_factory)
        async with session_factory() as db:
            with pytest.raises(Forbidden):
                await ReservationEngine(db, publisher).reserve(item_ids[0], OWNER_ID)

        assert (await read_items(session_factory))[0].reserved_by is None
        assert publisher.calls == []

    @pytest.mark.anyio
    async def test_owner_cannot_reserve_taken_item(self, session_factory, publisher):
        _, item_ids = await seed(session_factory)
        async with session_factory() as db:
            engine = ReservationEngine(db, publisher)
            await engine.reserve(item_ids[0], GUEST_ID)
            with pytest.raises(Forbidden):
                await engine.reserve(item_ids[0], OWNER_ID)

    @pytest.mark.anyio
    async def test_second_guest_gets_conflict(self, session_factory, publisher):
        _, item_ids = await seed(session_factory)
        async with session_factory() as db:
            engine = ReservationEngine(db, publisher)
            await engine.reserve(item_ids[0], GUEST_ID)
            with pytest.raises(Conflict):
                await engine.reserve(item_ids[0], OTHER_GUEST_ID)

        assert (await read_items(session_factory))[0].reserved_by == GUEST_ID
        assert len(publisher.calls) == 1

    @pytest.mark.anyio
    async def test_repeat_reserve_by_holder_is_idempotent(self, session_factory, publisher):
        _, item_ids = await seed(session_factory)
        async with session_factory() as db:
            engine = ReservationEngine(db, publisher)
            await engine.reserve(item_ids[0], GUEST_ID)
            first_reserved_at = (await read_items(session_factory))[0].reserved_at

            outcome = await engine.reserve(item_ids[0], GUEST_ID)

        assert outcome is ReserveOutcome.ALREADY_RESERVED
        item = (await read_items(session_factory))[0]
        assert item.reserved_by == GUEST_ID
        assert item.reserved_at == first_reserved_at
        assert len(publisher.calls) == 1

    @pytest.mark.anyio
    async def test_unknown_item_is_not_found(self, session_factory, publisher):
        await seed(session_factory)
        async with session_factory() as db:
            with pytest.raises(NotFound):
                await ReservationEngine(db, publisher).reserve(999_999, GUEST_ID)

    @pytest.mark.anyio
    async def test_racing_guests_leave_exactly_one_winner(self, session_factory, publisher):
        _, item_ids = await seed(session_factory, texts=("Only",))
        guest_ids = [5000 + n for n in range(6)]
        async with session_factory() as db:
            db.add_all([User(id=guest_id, first_name=f"Guest {guest_id}") for guest_id in guest_ids])
            await db.commit()

        async def attempt(guest_id: int):
            async with session_factory() as db:
                return await ReservationEngine(db, publisher).reserve(item_ids[0], guest_id)

        results = await asyncio.gather(*(attempt(guest_id) for guest_id in guest_ids), return_exceptions=True)

        winners = [result for result in results if result is ReserveOutcome.RESERVED]
        losers = [result for result in results if isinstance(result, Conflict)]
        assert len(winners) == 1
        assert len(losers) == len(guest_ids) - 1

        item = (await read_items(session_factory))[0]
        assert item.reserved_by in guest_ids
        assert len(publisher.calls) == 1


# ── Cancel ────────────────────────────────────────────────────────────────────

class TestCancel:
    @pytest.mark.anyio
    async def test_holder_cancels(self, session_factory, publisher):
        share_id, item_ids = await seed(session_factory)
        async with session_factory() as db:
            engine = ReservationEngine(db, publisher)
            await engine.reserve(item_ids[1], GUEST_ID)
            await engine.cancel(item_ids[1], GUEST_ID)

        item = (await read_items(session_factory))[1]
        assert item.reserved_by is None
        assert item.reserved_at is None
        assert publisher.calls == [(share_id, GUEST_ID), (share_id, GUEST_ID)]

    @pytest.mark.anyio
    async def test_cancel_of_free_item_conflicts(self, session_factory, publisher):
        _, item_ids = await seed(session_factory)
        async with session_factory() as db:
            with pytest.raises(Conflict):
                await ReservationEngine(db, publisher).cancel(item_ids[0], GUEST_ID)
        assert publisher.calls == []

    @pytest.mark.anyio
    async def test_other_guest_cannot_cancel(self, session_factory, publisher):
        _, item_ids = await seed(session_factory)
        async with session_factory() as db:
            engine = ReservationEngine(db, publisher)
            await engine.reserve(item_ids[0], GUEST_ID)
            with pytest.raises(Forbidden):
                await engine.cancel(item_ids[0], OTHER_GUEST_ID)

        assert (await read_items(session_factory))[0].reserved_by == GUEST_ID

    @pytest.mark.anyio
    async def test_owner_cannot_cancel(self, session_factory, publisher):
        _, item_ids = await seed(session_factory)
        async with session_factory() as db:
            engine = ReservationEngine(db, publisher)
            await engine.reserve(item_ids[0], GUEST_ID)
            with pytest.raises(Forbidden):
                await engine.cancel(item_ids[0], OWNER_ID)

        assert (await read_items(session_factory))[0].reserved_by == GUEST_ID

    @pytest.mark.anyio
    async def test_cancel_unknown_item_is_not_found(self, session_factory, publisher):
        await seed(session_factory)
        async with session_factory() as db:
            with pytest.raises(NotFound):
                await ReservationEngine(db, publisher).cancel(424242, GUEST_ID)

    @pytest.mark.anyio
    async def test_item_can_be_reserved_again_after_cancel(self, session_factory, publisher):
        _, item_ids = await seed(session_factory)
        async with session_factory() as db:
            engine = ReservationEngine(db, publisher)
            await engine.reserve(item_ids[0], GUEST_ID)
            await engine.cancel(item_ids[0], GUEST_ID)
            outcome = await engine.reserve(item_ids[0], OTHER_GUEST_ID)

        assert outcome is ReserveOutcome.RESERVED
        assert (await read_items(session_factory))[0].reserved_by == OTHER_GUEST_ID


# ── Replace items ─────────────────────────────────────────────────────────────

class TestReplaceItems:
    @pytest.mark.anyio
    async def test_replace_keeps_updates_inserts_and_deletes(self, session_factory, publisher):
        share_id, (a_id, b_id, c_id) = await seed(session_factory)
        incoming = [
            ItemInput(id=a_id, text="A, but bigger", links=["https://shop.example/a"]),
            ItemInput(text="D", photos=["https://cdn.example/d.jpg"]),
        ]
        async with session_factory() as db:
            summary = await ReservationEngine(db, publisher).replace_items(OWNER_ID, incoming)

        assert (summary.created, summary.updated, summary.deleted) == (1, 1, 2)
        items = await read_items(session_factory)
        assert [item.text for item in items] == ["A, but bigger", "D"]
        assert items[0].id == a_id
        assert items[0].links == '["https://shop.example/a"]'
        assert items[1].id not in (b_id, c_id)
        assert items[1].created_by == OWNER_ID
        assert publisher.calls == [(share_id, OWNER_ID)]

    @pytest.mark.anyio
    async def test_kept_item_keeps_its_reservation(self, session_factory, publisher):
        _, (a_id, _, _) = await seed(session_factory)
        async with session_factory() as db:
            engine = ReservationEngine(db, publisher)
            await engine.reserve(a_id, GUEST_ID)
            await engine.replace_items(OWNER_ID, [ItemInput(id=a_id, text="Renamed")])

        (item,) = await read_items(session_factory)
        assert item.text == "Renamed"
        assert item.reserved_by == GUEST_ID

    @pytest.mark.anyio
    async def test_unknown_ids_become_new_items(self, session_factory, publisher):
        await seed(session_factory, texts=("A",))
        async with session_factory() as db:
            summary = await ReservationEngine(db, publisher).replace_items(
                OWNER_ID, [ItemInput(id=987654, text="Brand new")]
            )

        assert summary.created == 1
        assert summary.deleted == 1
        (item,) = await read_items(session_factory)
        assert item.text == "Brand new"
        assert item.id != 987654

    @pytest.mark.anyio
    async def test_blank_entries_are_dropped(self, session_factory, publisher):
        await seed(session_factory, texts=())
        incoming = [
            ItemInput(text="   "),
            ItemInput(text="", links=["  "], photos=[""]),
            ItemInput(text="Kept"),
        ]
        async with session_factory() as db:
            await ReservationEngine(db, publisher).replace_items(OWNER_ID, incoming)

        assert [item.text for item in await read_items(session_factory)] == ["Kept"]

    @pytest.mark.anyio
    async def test_empty_list_clears_items(self, session_factory, publisher):
        await seed(session_factory)
        async with session_factory() as db:
            summary = await ReservationEngine(db, publisher).replace_items(OWNER_ID, [])

        assert summary.deleted == 3
        assert await read_items(session_factory) == []
        assert len(publisher.calls) == 1

    @pytest.mark.anyio
    async def test_failure_mid_batch_rolls_everything_back(self, session_factory, publisher, monkeypatch):
        _, (a_id, _, _) = await seed(session_factory)
        real_encode = reservations_module.encode_media

        def exploding_encode(values):
            if values == ["boom"]:
                raise RuntimeError("storage failure")
            return real_encode(values)

        monkeypatch.setattr(reservations_module, "encode_media", exploding_encode)
        incoming = [
            ItemInput(id=a_id, text="A changed"),
            ItemInput(text="E", links=["boom"]),
        ]
        async with session_factory() as db:
            with pytest.raises(RuntimeError):
                await ReservationEngine(db, publisher).replace_items(OWNER_ID, incoming)

        assert [item.text for item in await read_items(session_factory)] == ["A", "B", "C"]
        assert publisher.calls == []

    @pytest.mark.anyio
    async def test_guest_without_list_is_forbidden(self, session_factory, publisher):
        await seed(session_factory)
        async with session_factory() as db:
            with pytest.raises(Forbidden):
                await ReservationEngine(db, publisher).replace_items(GUEST_ID, [ItemInput(text="Sneaky")])

        assert len(await read_items(session_factory)) == 3

    @pytest.mark.anyio
    async def test_cannot_edit_someone_elses_list(self, session_factory, publisher):
        await seed(session_factory)
        async with session_factory() as db:
            wishlist_id = (await db.execute(select(Wishlist.id))).scalar_one()
            with pytest.raises(Forbidden):
                await ReservationEngine(db, publisher).replace_items_for(
                    wishlist_id, GUEST_ID, [ItemInput(text="Sneaky")]
                )

        assert [item.text for item in await read_items(session_factory)] == ["A", "B", "C"]

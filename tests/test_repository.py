"""
Tests for the repository layer: in-memory store, Mongo query building and
the timeout/retry guard
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect

from techcare.errors import UpstreamError
from techcare.repositories.base import BookingFilter, run_guarded
from techcare.repositories.memory import InMemoryBookingRepository
from techcare.repositories.mongo import MongoBookingRepository, booking_query
from techcare.schemas.booking import BookingStatus, ServiceCategory
from techcare.utils import new_id

BASE = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _row(i: int, **overrides):
    data = {
        "customer_id": "c1",
        "technician_id": None,
        "title": f"Job {i}",
        "description": "Laptop fan noise",
        "category": "LAPTOP_REPAIR",
        "location": "Kigali",
        "status": "PENDING",
        "total_price": 0.0,
        "created_at": BASE + timedelta(hours=i),
        "updated_at": BASE + timedelta(hours=i),
    }
    data.update(overrides)
    return data


@pytest.mark.asyncio
async def test_conditional_update_mismatch_leaves_row_untouched():
    repo = InMemoryBookingRepository()
    booking = await repo.create(_row(0))

    result = await repo.conditional_update(
        booking.id, {"status": "CONFIRMED"}, {"status": "IN_PROGRESS"}
    )
    assert result is None
    assert (await repo.get_by_id(booking.id)).status is BookingStatus.PENDING

    result = await repo.conditional_update(
        booking.id, {"status": "PENDING", "technician_id": None}, {"status": "CANCELLED"}
    )
    assert result.status is BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_conditional_update_on_missing_row_returns_none():
    repo = InMemoryBookingRepository()
    assert await repo.conditional_update(new_id(), {}, {"status": "CANCELLED"}) is None


@pytest.mark.asyncio
async def test_returned_bookings_are_copies():
    repo = InMemoryBookingRepository()
    booking = await repo.create(_row(0))
    booking.title = "changed locally"
    assert (await repo.get_by_id(booking.id)).title == "Job 0"


@pytest.mark.asyncio
async def test_list_is_newest_first_and_paginated():
    repo = InMemoryBookingRepository()
    for i in range(5):
        await repo.create(_row(i))

    items, total = await repo.list(BookingFilter(), skip=0, limit=2)
    assert total == 5
    assert [b.title for b in items] == ["Job 4", "Job 3"]

    items, _ = await repo.list(BookingFilter(), skip=4, limit=2)
    assert [b.title for b in items] == ["Job 0"]


@pytest.mark.asyncio
async def test_list_filters():
    repo = InMemoryBookingRepository()
    await repo.create(_row(0))
    await repo.create(_row(1, customer_id="c2", status="CANCELLED"))
    await repo.create(_row(2, category="PHONE_REPAIR", description="Cracked SCREEN"))
    await repo.create(_row(3, technician_id="t1", status="CONFIRMED"))

    async def titles(**kwargs):
        items, _ = await repo.list(BookingFilter(**kwargs), limit=50)
        return sorted(b.title for b in items)

    assert await titles(customer_id="c2") == ["Job 1"]
    assert await titles(technician_id="t1") == ["Job 3"]
    assert await titles(statuses=[BookingStatus.CANCELLED]) == ["Job 1"]
    assert await titles(category=ServiceCategory.PHONE_REPAIR) == ["Job 2"]
    assert await titles(search="screen") == ["Job 2"]
    assert await titles(search="job 3") == ["Job 3"]
    assert await titles(start_date=BASE + timedelta(hours=2)) == ["Job 2", "Job 3"]
    assert await titles(end_date=BASE + timedelta(hours=1)) == ["Job 0", "Job 1"]


@pytest.mark.asyncio
async def test_active_bookings_for_technician_skip_terminal_and_excluded():
    repo = InMemoryBookingRepository()
    keep = await repo.create(_row(0, technician_id="t1", status="CONFIRMED"))
    skip = await repo.create(_row(1, technician_id="t1", status="PENDING"))
    await repo.create(_row(2, technician_id="t1", status="COMPLETED"))
    await repo.create(_row(3, technician_id="t2", status="PENDING"))

    active = await repo.list_active_for_technician("t1", exclude_id=skip.id)
    assert [b.id for b in active] == [keep.id]


def test_booking_query_translates_filters():
    start = BASE
    query = booking_query(BookingFilter(
        customer_id="c1",
        statuses=[BookingStatus.PENDING, BookingStatus.CONFIRMED],
        category=ServiceCategory.DATA_RECOVERY,
        search="a.b(c)",
        start_date=start,
    ))
    assert query["customer_id"] == "c1"
    assert query["status"] == {"$in": ["PENDING", "CONFIRMED"]}
    assert query["category"] == "DATA_RECOVERY"
    assert query["$or"][0]["title"]["$regex"] == r"a\.b\(c\)"
    assert query["created_at"] == {"$gte": start}


def test_empty_filter_matches_everything():
    assert booking_query(BookingFilter()) == {}


class RecordingCollection:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def find_one_and_update(self, query, update, return_document=None):
        self.calls.append((query, update))
        return self.result


class FakeDb:
    def __init__(self, bookings):
        self.bookings = bookings


@pytest.mark.asyncio
async def test_mongo_conditional_update_filters_on_pre_image():
    oid = ObjectId()
    collection = RecordingCollection(result=None)
    repo = MongoBookingRepository(FakeDb(collection), timeout=1, read_retries=0)

    result = await repo.conditional_update(
        str(oid), {"status": "PENDING", "technician_id": None}, {"status": "CONFIRMED"}
    )

    assert result is None
    query, update = collection.calls[0]
    assert query == {"_id": oid, "status": "PENDING", "technician_id": None}
    assert update == {"$set": {"status": "CONFIRMED"}}


@pytest.mark.asyncio
async def test_mongo_rejects_malformed_ids_without_a_query():
    collection = RecordingCollection(result=None)
    repo = MongoBookingRepository(FakeDb(collection), timeout=1, read_retries=0)
    assert await repo.conditional_update("not-an-id", {}, {"status": "CANCELLED"}) is None
    assert collection.calls == []


@pytest.mark.asyncio
async def test_run_guarded_retries_reads_then_succeeds():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise AutoReconnect("primary stepped down")
        return "ok"

    assert await run_guarded("get", flaky, timeout=1, retries=2) == "ok"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_run_guarded_gives_up_with_upstream_error():
    attempts = []

    async def down():
        attempts.append(1)
        raise AutoReconnect("no primary")

    with pytest.raises(UpstreamError) as exc:
        await run_guarded("list", down, timeout=1, retries=2)
    assert len(attempts) == 3
    assert isinstance(exc.value.__cause__, AutoReconnect)


@pytest.mark.asyncio
async def test_run_guarded_writes_are_single_attempt():
    attempts = []

    async def down():
        attempts.append(1)
        raise AutoReconnect("no primary")

    with pytest.raises(UpstreamError):
        await run_guarded("conditional_update", down, timeout=1)
    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_run_guarded_times_out():
    async def hang():
        await asyncio.sleep(5)

    with pytest.raises(UpstreamError):
        await run_guarded("get", hang, timeout=0.01)


@pytest.mark.asyncio
async def test_active_bookings_for_technician_are_not_capped():
    repo = InMemoryBookingRepository()
    oldest = await repo.create(_row(0, technician_id="t1", status="CONFIRMED"))
    for i in range(1, 1101):
        await repo.create(_row(i, technician_id="t1", status="PENDING"))

    active = await repo.list_active_for_technician("t1")
    assert len(active) == 1101
    assert oldest.id in {b.id for b in active}


@pytest.mark.asyncio
async def test_list_without_limit_returns_everything_after_skip():
    repo = InMemoryBookingRepository()
    for i in range(4):
        await repo.create(_row(i))
    items, total = await repo.list(BookingFilter(), skip=1, limit=None)
    assert total == 4
    assert [b.title for b in items] == ["Job 2", "Job 1", "Job 0"]

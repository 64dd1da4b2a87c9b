"""
Concurrency tests for seat reservations
Tests race conditions, double booking prevention and keyed locking
"""

import asyncio
import pytest
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from turnstile.core.exceptions import ErrorKind, Failure, LockAcquisitionError
from turnstile.core.locks import LocalKeyedLock, seat_lock_key
from turnstile.models import Event, Reservation, TicketType
from turnstile.services.reservation_engine import ReservationFlow, ReservationRequest
from turnstile.stores import SqlReservationStore

from conftest import EVENT_DATE, count_held_seats, count_reservations, fetch, persist


@pytest.mark.concurrency
class TestSeatReservationConcurrency:
    """Concurrent reservation scenarios"""

    async def test_concurrent_requests_for_one_seat(
        self, db, reservation_engine, free_event, attendee
    ):
        """Exactly one of many simultaneous requests for a seat wins"""
        num_concurrent_attempts = 8
        request = ReservationRequest(
            event_id=free_event.id,
            user_id=attendee.id,
            booking_date=EVENT_DATE,
            seats=("A1",),
        )

        results = await asyncio.gather(*[
            reservation_engine.reserve(request, ReservationFlow.FREE)
            for _ in range(num_concurrent_attempts)
        ])

        successful = [r for r in results if isinstance(r, Reservation)]
        conflicts = [r for r in results if isinstance(r, Failure)]
        assert len(successful) == 1
        assert len(conflicts) == num_concurrent_attempts - 1
        assert all(f.kind == ErrorKind.SEAT_CONFLICT for f in conflicts)
        assert all(f.details["conflicting_seats"] == ["A1"] for f in conflicts)

        assert await count_reservations(db, free_event.id) == 1
        assert await count_held_seats(db, free_event.id, "A1") == 1
        event = await fetch(db, Event, free_event.id)
        assert event.available_seats == ["A2"]

    async def test_concurrent_disjoint_requests_all_succeed(self, db, reservation_engine, organizer, attendee):
        seats = [f"C{i}" for i in range(1, 7)]
        event = await persist(db, Event(
            name="Club Night",
            ticket_type=TicketType.FREE,
            ticket_price=Decimal("0"),
            total_seats=len(seats),
            available_seats=list(seats),
            organizer_id=organizer.id,
        ))

        results = await asyncio.gather(*[
            reservation_engine.reserve(
                ReservationRequest(
                    event_id=event.id,
                    user_id=attendee.id,
                    booking_date=EVENT_DATE,
                    seats=(seat,),
                ),
                ReservationFlow.FREE,
            )
            for seat in seats
        ])

        assert all(isinstance(r, Reservation) for r in results)
        refreshed = await fetch(db, Event, event.id)
        assert refreshed.available_seats == []
        assert refreshed.seats_version == len(seats)

    async def test_concurrent_dates_share_seat_set(
        self, db, reservation_engine, free_event, attendee, other_attendee
    ):
        """Different dates take different locks; the seat set must still lose nothing"""
        first, second = await asyncio.gather(
            reservation_engine.reserve(
                ReservationRequest(
                    event_id=free_event.id,
                    user_id=attendee.id,
                    booking_date=EVENT_DATE,
                    seats=("A1",),
                ),
                ReservationFlow.FREE,
            ),
            reservation_engine.reserve(
                ReservationRequest(
                    event_id=free_event.id,
                    user_id=other_attendee.id,
                    booking_date=EVENT_DATE + timedelta(days=1),
                    seats=("A2",),
                ),
                ReservationFlow.FREE,
            ),
        )

        assert isinstance(first, Reservation)
        assert isinstance(second, Reservation)
        event = await fetch(db, Event, free_event.id)
        assert event.available_seats == []
        assert event.seats_version == 2

    async def test_unique_constraint_catches_missed_conflict(
        self, db, reservation_engine, free_event, attendee, other_attendee, monkeypatch
    ):
        """A holder written by another process surfaces as a seat conflict"""
        await reservation_engine.reserve(
            ReservationRequest(
                event_id=free_event.id, user_id=attendee.id,
                booking_date=EVENT_DATE, seats=("A1",)
            ),
            ReservationFlow.FREE,
        )

        original = SqlReservationStore.find_conflicts
        calls = {"count": 0}

        async def blind_first_check(self, *args, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                return []
            return await original(self, *args, **kwargs)

        monkeypatch.setattr(SqlReservationStore, "find_conflicts", blind_first_check)

        outcome = await reservation_engine.reserve(
            ReservationRequest(
                event_id=free_event.id, user_id=other_attendee.id,
                booking_date=EVENT_DATE, seats=("A1",)
            ),
            ReservationFlow.FREE,
        )

        assert isinstance(outcome, Failure)
        assert outcome.kind == ErrorKind.SEAT_CONFLICT
        assert outcome.details["conflicting_seats"] == ["A1"]
        assert await count_reservations(db, free_event.id) == 1
        event = await fetch(db, Event, free_event.id)
        assert event.available_seats == ["A2"]


class TestLocalKeyedLock:

    async def test_entries_are_dropped_after_use(self):
        lock = LocalKeyedLock()
        async with lock.hold("seats:a"):
            assert len(lock) == 1
        assert len(lock) == 0

    async def test_same_key_is_serialized(self):
        lock = LocalKeyedLock()
        inside = 0
        peak = 0

        async def critical_section():
            nonlocal inside, peak
            async with lock.hold("seats:a"):
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0.01)
                inside -= 1

        await asyncio.gather(*[critical_section() for _ in range(5)])
        assert peak == 1
        assert len(lock) == 0

    async def test_different_keys_do_not_block(self):
        lock = LocalKeyedLock(timeout=0.5)
        async with lock.hold("seats:a"):
            async with lock.hold("seats:b"):
                assert len(lock) == 2

    async def test_timeout_raises_lock_error(self):
        lock = LocalKeyedLock(timeout=0.05)
        held = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with lock.hold("seats:a"):
                held.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await held.wait()
        with pytest.raises(LockAcquisitionError):
            async with lock.hold("seats:a"):
                pass
        release.set()
        await task
        assert len(lock) == 0

    def test_lock_key_is_per_event_and_date(self):
        event_id = uuid4()
        today = seat_lock_key(event_id, EVENT_DATE)
        tomorrow = seat_lock_key(event_id, EVENT_DATE + timedelta(days=1))
        assert today != tomorrow
        assert today == f"seats:{event_id}:{EVENT_DATE.isoformat()}"

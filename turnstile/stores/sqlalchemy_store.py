"""SQLAlchemy implementations of the store interfaces."""

from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

from sqlalchemy import delete, select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from turnstile.models import Event, Reservation, ReservationSeat, ReservationStatus, User
from turnstile.stores.interfaces import EventCatalog, ReservationStore, UserDirectory


class SqlEventCatalog(EventCatalog):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_event(self, event_id: UUID) -> Optional[Event]:
        return await self.session.get(Event, event_id)

    async def read_seat_state(self, event_id: UUID) -> Optional[tuple[list[str], int]]:
        # Column select bypasses the identity map so a retry sees the latest write
        result = await self.session.execute(
            select(Event.available_seats, Event.seats_version).where(Event.id == event_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return list(row.available_seats or []), row.seats_version

    async def update_available_seats(
        self, event_id: UUID, new_seats: list[str], expected_version: int
    ) -> bool:
        result = await self.session.execute(
            update(Event)
            .where(and_(Event.id == event_id, Event.seats_version == expected_version))
            .values(available_seats=list(new_seats), seats_version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class SqlUserDirectory(UserDirectory):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: UUID) -> Optional[User]:
        return await self.session.get(User, user_id)


class SqlReservationStore(ReservationStore):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_conflicts(
        self, event_id: UUID, booking_date: date, seats: Iterable[str]
    ) -> list[Reservation]:
        labels = list(seats)
        if not labels:
            return []
        held = select(ReservationSeat.reservation_id).where(
            and_(
                ReservationSeat.event_id == event_id,
                ReservationSeat.booking_date == booking_date,
                ReservationSeat.seat_label.in_(labels),
            )
        )
        stmt = select(Reservation).where(
            and_(
                Reservation.id.in_(held),
                Reservation.status != ReservationStatus.CANCELLED,
            )
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_expired_holds(
        self,
        now: datetime,
        event_id: Optional[UUID] = None,
        booking_date: Optional[date] = None,
        seats: Optional[Iterable[str]] = None
    ) -> list[Reservation]:
        stmt = select(Reservation).where(
            and_(
                Reservation.status == ReservationStatus.PENDING,
                Reservation.hold_expires_at.is_not(None),
                Reservation.hold_expires_at <= now,
            )
        )
        if event_id is not None:
            stmt = stmt.where(Reservation.event_id == event_id)
        if booking_date is not None:
            stmt = stmt.where(Reservation.booking_date == booking_date)
        if seats is not None:
            stmt = stmt.where(
                Reservation.id.in_(
                    select(ReservationSeat.reservation_id).where(
                        ReservationSeat.seat_label.in_(list(seats))
                    )
                )
            )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def release_holds(self, reservation_ids: Iterable[UUID]) -> int:
        ids = list(reservation_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            update(Reservation)
            .where(
                and_(
                    Reservation.id.in_(ids),
                    Reservation.status == ReservationStatus.PENDING,
                )
            )
            .values(status=ReservationStatus.CANCELLED, hold_expires_at=None)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.execute(
            delete(ReservationSeat)
            .where(ReservationSeat.reservation_id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def held_labels(self, event_id: UUID, seats: Iterable[str]) -> set[str]:
        labels = list(seats)
        if not labels:
            return set()
        result = await self.session.execute(
            select(ReservationSeat.seat_label)
            .join(Reservation, Reservation.id == ReservationSeat.reservation_id)
            .where(
                and_(
                    ReservationSeat.event_id == event_id,
                    ReservationSeat.seat_label.in_(labels),
                    Reservation.status != ReservationStatus.CANCELLED,
                )
            )
        )
        return set(result.scalars().all())

    async def insert(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        for label in reservation.seat_numbers or []:
            self.session.add(
                ReservationSeat(
                    reservation=reservation,
                    event_id=reservation.event_id,
                    booking_date=reservation.booking_date,
                    seat_label=label,
                )
            )
        # Flush here so a unique-constraint violation surfaces inside the caller's transaction
        await self.session.flush()
        await self.session.refresh(reservation)
        return reservation

    async def get(self, reservation_id: UUID, for_update: bool = False) -> Optional[Reservation]:
        return await self.session.get(Reservation, reservation_id, with_for_update=for_update or None)

    async def update_by_id(
        self, reservation_id: UUID, patch: Mapping[str, Any]
    ) -> Optional[Reservation]:
        reservation = await self.session.get(Reservation, reservation_id)
        if reservation is None:
            return None
        for key, value in patch.items():
            setattr(reservation, key, value)
        await self.session.flush()
        await self.session.refresh(reservation)
        return reservation

    async def mark_checked_in(self, reservation_id: UUID, at: datetime) -> bool:
        result = await self.session.execute(
            update(Reservation)
            .where(and_(Reservation.id == reservation_id, Reservation.checked_in_at.is_(None)))
            .values(checked_in_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

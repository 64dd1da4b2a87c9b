"""
Reservation engine: admission decisions without double-allocating seats

The conflict check and the seat consumption for one (event, booking date)
run under a keyed lock and inside a single database transaction:

  1. resolve the event and the user, and check the event's ticket type matches the flow
  2. release expired payment holds on the requested seats
  3. look for non-cancelled reservations already holding any requested seat
  4. insert the reservation plus one ``reservation_seats`` row per label
  5. remove the labels from the event's available set (compare-and-swap)

Paid reservations hold their seats until ``hold_expires_at``. An expired
hold is cancelled and its seats returned either when someone asks for one of
them or by ``sweep_expired_holds``.

The lock keeps same-process callers from racing; the unique constraint on
``reservation_seats`` catches callers in other processes, and its violation
is reported as a seat conflict like any other.
"""

from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional, Tuple, Union
from uuid import UUID
import enum
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from turnstile.config import settings
from turnstile.core.database import DatabaseManager
from turnstile.core.exceptions import Failure, PersistenceError
from turnstile.core.locks import KeyedLock, seat_lock_key
from turnstile.core.metrics import metrics_collector
from turnstile.models import (
    SEAT_LABEL_MAX_LENGTH,
    Event,
    Reservation,
    ReservationStatus,
    PaymentStatus,
    TicketType
)
from turnstile.stores import (
    EventCatalog,
    ReservationStore,
    SqlEventCatalog,
    SqlReservationStore,
    SqlUserDirectory
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


class ReservationFlow(str, enum.Enum):
    FREE = "free"
    PAID = "paid"

    @property
    def ticket_type(self) -> TicketType:
        return TicketType.FREE if self is ReservationFlow.FREE else TicketType.PAID


@dataclass(frozen=True)
class ReservationRequest:
    event_id: UUID
    user_id: UUID
    booking_date: date
    guest_size: int = 1
    seats: Tuple[str, ...] = field(default_factory=tuple)


class ReservationEngine:

    def __init__(
        self,
        db: DatabaseManager,
        seat_lock: KeyedLock,
        max_seats: int = settings.MAX_SEATS_PER_RESERVATION,
        seat_update_attempts: int = 5,
        hold_ttl: timedelta = timedelta(minutes=settings.PAYMENT_HOLD_MINUTES),
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = db
        self.seat_lock = seat_lock
        self.max_seats = max_seats
        self.seat_update_attempts = seat_update_attempts
        self.hold_ttl = hold_ttl
        self.clock = clock

    async def reserve(
        self, request: ReservationRequest, flow: ReservationFlow
    ) -> Union[Reservation, Failure]:
        invalid = self._validate(request)
        if invalid is not None:
            metrics_collector.record_reservation(flow.value, invalid.kind.value)
            return invalid

        # General admission has no shared seat set to protect
        guard = (
            self.seat_lock.hold(seat_lock_key(request.event_id, request.booking_date))
            if request.seats else nullcontext()
        )
        async with guard:
            try:
                outcome = await self._reserve_in_transaction(request, flow)
            except IntegrityError:
                logger.info(
                    f"Seat hold rejected by unique constraint for event {request.event_id} "
                    f"on {request.booking_date}"
                )
                outcome = await self._conflict_after_race(request)
            except SQLAlchemyError as e:
                metrics_collector.record_reservation(flow.value, "PERSISTENCE_ERROR")
                raise PersistenceError("reserve") from e

        if isinstance(outcome, Failure):
            metrics_collector.record_reservation(flow.value, outcome.kind.value)
            logger.info(f"Reservation rejected: {outcome.kind.value}", extra={"details": outcome.details})
        else:
            metrics_collector.record_reservation(flow.value, outcome.status.value)
            logger.info(
                f"Reservation {outcome.id} {outcome.status.value} for event {outcome.event_id}",
                extra={"seats": outcome.seat_numbers},
            )
        return outcome

    def _validate(self, request: ReservationRequest) -> Optional[Failure]:
        if request.guest_size < 1:
            return Failure.invalid_request("Guest size must be at least 1", "guest_size")
        seats = request.seats
        if any(not isinstance(s, str) or not s.strip() for s in seats):
            return Failure.invalid_request("Seat labels must be non-empty strings", "seats")
        if any(len(s) > SEAT_LABEL_MAX_LENGTH for s in seats):
            return Failure.invalid_request(
                f"Seat labels are limited to {SEAT_LABEL_MAX_LENGTH} characters", "seats"
            )
        if len(set(seats)) != len(seats):
            return Failure.invalid_request("Duplicate seat labels not allowed", "seats")
        if len(seats) > self.max_seats:
            return Failure.invalid_request(
                f"At most {self.max_seats} seats per reservation", "seats"
            )
        if len(seats) > request.guest_size:
            return Failure.invalid_request("More seats requested than guests", "seats")
        return None

    async def _reserve_in_transaction(
        self, request: ReservationRequest, flow: ReservationFlow
    ) -> Union[Reservation, Failure]:
        async with self.db.atomic_transaction() as session:
            events = SqlEventCatalog(session)
            reservations = SqlReservationStore(session)

            event = await events.get_event(request.event_id)
            if event is None:
                return Failure.not_found("Event", request.event_id)
            if event.ticket_type != flow.ticket_type:
                return Failure.invalid_request(
                    f"Event is a {event.ticket_type.value} event; "
                    f"use the {event.ticket_type.value.lower()} reservation flow"
                )
            if await SqlUserDirectory(session).get_user(request.user_id) is None:
                return Failure.not_found("User", request.user_id)

            if request.seats:
                await self._release_expired(
                    events, reservations, event.id, request.booking_date, request.seats
                )
                held = await reservations.find_conflicts(
                    request.event_id, request.booking_date, request.seats
                )
                colliding = self._colliding_seats(held, request.seats)
                if colliding:
                    return Failure.seat_conflict(colliding)

            reservation = await reservations.insert(self._build(request, event, flow))

            if request.seats:
                await self._rewrite_seats(events, event.id, take=request.seats)

            return reservation

    @staticmethod
    def _colliding_seats(held, requested) -> set:
        wanted = set(requested)
        return {seat for r in held for seat in (r.seat_numbers or []) if seat in wanted}

    def _build(self, request: ReservationRequest, event: Event, flow: ReservationFlow) -> Reservation:
        reservation = Reservation(
            event_id=event.id,
            user_id=request.user_id,
            booking_date=request.booking_date,
            seat_numbers=list(request.seats),
            guest_size=request.guest_size,
        )
        if flow is ReservationFlow.FREE:
            reservation.total_price = Decimal("0")
            reservation.status = ReservationStatus.CONFIRMED
            reservation.payment_status = PaymentStatus.PAID
            reservation.confirmed_at = self.clock()
        else:
            # Finalized by the payment callback through confirm_payment
            reservation.total_price = Decimal(event.ticket_price or 0) * request.guest_size
            reservation.status = ReservationStatus.PENDING
            reservation.payment_status = PaymentStatus.UNPAID
            reservation.hold_expires_at = self.clock() + self.hold_ttl
        return reservation

    async def _rewrite_seats(
        self, events: EventCatalog, event_id: UUID, take: Iterable[str] = (), give_back: Iterable[str] = ()
    ) -> None:
        # Other booking dates of the same event share this seat set, so the
        # per-date lock does not cover it; compare-and-swap on seats_version.
        taken = set(take)
        returned = list(give_back)
        for attempt in range(1, self.seat_update_attempts + 1):
            state = await events.read_seat_state(event_id)
            if state is None:
                raise PersistenceError("update_available_seats", "Event disappeared mid-reservation")
            available, version = state
            remaining = [seat for seat in available if seat not in taken]
            remaining += [seat for seat in returned if seat not in remaining]
            if await events.update_available_seats(event_id, remaining, version):
                return
            logger.debug(f"Seat set for event {event_id} changed concurrently (attempt {attempt})")
        raise PersistenceError(
            "update_available_seats",
            f"Seat set for event {event_id} kept changing; giving up"
        )

    async def _release_expired(
        self,
        events: EventCatalog,
        reservations: ReservationStore,
        event_id: UUID,
        booking_date: Optional[date] = None,
        seats: Optional[Iterable[str]] = None
    ) -> list[Reservation]:
        expired = await reservations.find_expired_holds(self.clock(), event_id, booking_date, seats)
        if not expired:
            return []
        await reservations.release_holds([r.id for r in expired])
        labels = {seat for r in expired for seat in (r.seat_numbers or [])}
        # A label may also be held on another booking date
        still_held = await reservations.held_labels(event_id, labels)
        freed = sorted(labels - still_held)
        if freed:
            await self._rewrite_seats(events, event_id, give_back=freed)
        for reservation in expired:
            logger.info(f"Payment hold for reservation {reservation.id} expired; seats released")
            metrics_collector.record_reservation(ReservationFlow.PAID.value, "hold_expired")
        return expired

    async def sweep_expired_holds(self) -> int:
        """Release every expired payment hold. Returns how many were cancelled."""
        try:
            async with self.db.read_session() as session:
                expired = await SqlReservationStore(session).find_expired_holds(self.clock())
                groups = sorted({(r.event_id, r.booking_date) for r in expired}, key=str)
        except SQLAlchemyError as e:
            raise PersistenceError("sweep_expired_holds") from e

        released = 0
        for event_id, booking_date in groups:
            async with self.seat_lock.hold(seat_lock_key(event_id, booking_date)):
                try:
                    async with self.db.atomic_transaction() as session:
                        released += len(await self._release_expired(
                            SqlEventCatalog(session), SqlReservationStore(session), event_id, booking_date
                        ))
                except SQLAlchemyError as e:
                    raise PersistenceError("sweep_expired_holds") from e
        return released

    async def _conflict_after_race(self, request: ReservationRequest) -> Failure:
        async with self.db.read_session() as session:
            held = await SqlReservationStore(session).find_conflicts(
                request.event_id, request.booking_date, request.seats
            )
        colliding = self._colliding_seats(held, request.seats)
        if not colliding:
            # Constraint fired but nothing holds the seats now; not a seat conflict
            raise PersistenceError("reserve", "Seat hold rejected but no holder found")
        return Failure.seat_conflict(colliding)

    async def confirm_payment(
        self, reservation_id: UUID, payment_reference: Optional[str] = None
    ) -> Union[Reservation, Failure]:
        """
        Payment-success hand-off for the paid flow. Repeated callbacks for an
        already confirmed reservation return it unchanged. A callback that
        arrives after the payment hold expired releases the hold and is refused.
        """
        try:
            async with self.db.atomic_transaction() as session:
                store = SqlReservationStore(session)
                reservation = await store.get(reservation_id, for_update=True)
                if reservation is None:
                    return Failure.not_found("Reservation", reservation_id)
                if reservation.status == ReservationStatus.CANCELLED:
                    return Failure.invalid_request("Reservation has been cancelled")
                if reservation.status == ReservationStatus.CONFIRMED:
                    return reservation
                if reservation.hold_expires_at and _aware(reservation.hold_expires_at) <= self.clock():
                    await self._release_expired(
                        SqlEventCatalog(session), store, reservation.event_id, reservation.booking_date,
                        reservation.seat_numbers or None
                    )
                    return Failure.invalid_request("Payment hold has expired")
                patch = {
                    "status": ReservationStatus.CONFIRMED,
                    "payment_status": PaymentStatus.PAID,
                    "confirmed_at": self.clock(),
                    "hold_expires_at": None,
                }
                if payment_reference:
                    patch["payment_reference"] = payment_reference
                reservation = await store.update_by_id(reservation_id, patch)
        except SQLAlchemyError as e:
            raise PersistenceError("confirm_payment") from e

        logger.info(f"Reservation {reservation_id} confirmed after payment")
        metrics_collector.record_reservation(ReservationFlow.PAID.value, "payment_confirmed")
        return reservation

    async def get_reservation(self, reservation_id: UUID) -> Union[Reservation, Failure]:
        try:
            async with self.db.read_session() as session:
                reservation = await SqlReservationStore(session).get(reservation_id)
        except SQLAlchemyError as e:
            raise PersistenceError("get_reservation") from e
        if reservation is None:
            return Failure.not_found("Reservation", reservation_id)
        return reservation

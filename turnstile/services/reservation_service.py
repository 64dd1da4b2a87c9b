"""
Public reservation operations, independent of transport

Every operation returns either its result or a ``Failure``. A confirmed
reservation whose ticket could not be issued is a valid outcome: the result
carries ``ticket_url=None`` and the failure, and ``retry_issuance`` finishes
the job later without touching seats.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Optional, Union
from uuid import UUID
import logging

from sqlalchemy.exc import SQLAlchemyError

from turnstile.core.database import DatabaseManager
from turnstile.core.exceptions import Failure, PersistenceError
from turnstile.core.metrics import metrics_collector
from turnstile.models import Event, Reservation, ReservationStatus, User
from turnstile.services.reservation_engine import ReservationEngine, ReservationFlow, ReservationRequest
from turnstile.services.ticket_codec import TicketCodec, TicketPayload
from turnstile.services.ticket_service import TicketIssuer
from turnstile.stores import SqlEventCatalog, SqlReservationStore, SqlUserDirectory

logger = logging.getLogger(__name__)


@dataclass
class ReservationResult:
    reservation: Reservation
    ticket_url: Optional[str] = None
    issuance_failure: Optional[Failure] = None


@dataclass(frozen=True)
class VerifiedTicket:
    payload: TicketPayload
    reservation: Reservation
    seat_numbers: list


@dataclass(frozen=True)
class CheckInResult:
    ticket: VerifiedTicket
    already_checked_in: bool
    checked_in_at: Optional[datetime]


class ReservationService:

    def __init__(
        self,
        db: DatabaseManager,
        engine: ReservationEngine,
        issuer: TicketIssuer,
        codec: TicketCodec
    ):
        self.db = db
        self.engine = engine
        self.issuer = issuer
        self.codec = codec

    async def create_free_reservation(
        self,
        event_id: UUID,
        user_id: UUID,
        booking_date: date,
        guest_size: int = 1,
        seats: Iterable[str] = ()
    ) -> Union[ReservationResult, Failure]:
        request = ReservationRequest(
            event_id=event_id,
            user_id=user_id,
            booking_date=booking_date,
            guest_size=guest_size,
            seats=tuple(seats or ()),
        )
        outcome = await self.engine.reserve(request, ReservationFlow.FREE)
        if isinstance(outcome, Failure):
            return outcome
        # The reservation is committed; issuance happens outside the seat lock
        return await self._with_ticket(outcome)

    async def create_paid_reservation(
        self,
        event_id: UUID,
        user_id: UUID,
        booking_date: date,
        guest_size: int = 1,
        seats: Iterable[str] = ()
    ) -> Union[Reservation, Failure]:
        request = ReservationRequest(
            event_id=event_id,
            user_id=user_id,
            booking_date=booking_date,
            guest_size=guest_size,
            seats=tuple(seats or ()),
        )
        return await self.engine.reserve(request, ReservationFlow.PAID)

    async def confirm_payment(
        self, reservation_id: UUID, payment_reference: Optional[str] = None
    ) -> Union[ReservationResult, Failure]:
        outcome = await self.engine.confirm_payment(reservation_id, payment_reference)
        if isinstance(outcome, Failure):
            return outcome
        if outcome.ticket_url:
            return ReservationResult(reservation=outcome, ticket_url=outcome.ticket_url)
        return await self._with_ticket(outcome)

    async def release_expired_holds(self) -> int:
        return await self.engine.sweep_expired_holds()

    async def retry_issuance(self, reservation_id: UUID) -> Union[str, Failure]:
        existing = await self.engine.get_reservation(reservation_id)
        if isinstance(existing, Failure):
            return existing
        return await self.issuer.issue(existing)

    async def get_reservation(self, reservation_id: UUID) -> Union[Reservation, Failure]:
        return await self.engine.get_reservation(reservation_id)

    async def _with_ticket(self, reservation: Reservation) -> ReservationResult:
        issued = await self.issuer.issue(reservation)
        if isinstance(issued, Failure):
            logger.error(
                f"Reservation {reservation.id} confirmed without a ticket; "
                f"issuance failed at {issued.stage}"
            )
            return ReservationResult(reservation=reservation, issuance_failure=issued)
        reservation.ticket_url = issued
        return ReservationResult(reservation=reservation, ticket_url=issued)

    async def verify_ticket(self, scanned: str) -> Union[VerifiedTicket, Failure]:
        """
        Decode a scanned QR code and match it against the stored reservation
        """
        payload = self.codec.read(scanned)
        if isinstance(payload, Failure):
            metrics_collector.record_verification("invalid")
            return payload

        try:
            async with self.db.read_session() as session:
                reservation = await SqlReservationStore(session).get(payload.reservation_id)
                event = await SqlEventCatalog(session).get_event(reservation.event_id) if reservation else None
                user = await SqlUserDirectory(session).get_user(reservation.user_id) if reservation else None
        except SQLAlchemyError as e:
            raise PersistenceError("verify_ticket") from e

        if not self._matches(payload, reservation, event, user):
            # Authentic but stale or foreign: same answer as a forgery
            logger.warning(f"Ticket for reservation {payload.reservation_id} does not match records")
            metrics_collector.record_verification("mismatch")
            return Failure.invalid_ticket()

        metrics_collector.record_verification("valid")
        return VerifiedTicket(
            payload=payload,
            reservation=reservation,
            seat_numbers=list(reservation.seat_numbers or []),
        )

    @staticmethod
    def _matches(
        payload: TicketPayload,
        reservation: Optional[Reservation],
        event: Optional[Event],
        user: Optional[User]
    ) -> bool:
        if reservation is None or event is None or user is None:
            return False
        return (
            reservation.status == ReservationStatus.CONFIRMED
            and event.name == payload.event_name
            and user.username == payload.user_name
            and reservation.booking_date == payload.date
            and reservation.total_price == payload.total_price
            and event.is_free == payload.is_free
        )

    async def check_in(self, scanned: str, scanner_id: UUID) -> Union[CheckInResult, Failure]:
        """
        Admit the ticket holder once; later scans report the earlier check-in
        """
        verified = await self.verify_ticket(scanned)
        if isinstance(verified, Failure):
            return verified

        reservation = verified.reservation
        try:
            async with self.db.atomic_transaction() as session:
                event = await SqlEventCatalog(session).get_event(reservation.event_id)
                if event is None or event.organizer_id != scanner_id:
                    return Failure.forbidden("Not authorized to scan tickets for this event")
                store = SqlReservationStore(session)
                now = datetime.now(timezone.utc)
                first_scan = await store.mark_checked_in(reservation.id, now)
                current = await store.get(reservation.id)
                await session.refresh(current)
        except SQLAlchemyError as e:
            raise PersistenceError("check_in") from e

        if first_scan:
            logger.info(f"Reservation {reservation.id} checked in")
        else:
            logger.info(f"Reservation {reservation.id} scanned again after check-in")
        return CheckInResult(
            ticket=verified,
            already_checked_in=not first_scan,
            checked_in_at=current.checked_in_at,
        )


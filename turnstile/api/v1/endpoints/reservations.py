"""
Reservation endpoints
"""

from typing import Any
from uuid import UUID
from fastapi import APIRouter, Depends

from turnstile.api.deps import get_current_user_id, get_reservation_service, verify_payment_callback
from turnstile.api.responses import failure_response
from turnstile.core.exceptions import Failure
from turnstile.schemas.reservation import (
    PaymentConfirmation,
    ReservationCreate,
    ReservationResponse,
    ReservationWithTicketResponse,
    TicketIssueResponse,
)
from turnstile.services.reservation_service import ReservationResult, ReservationService

router = APIRouter()


def _with_ticket(result: ReservationResult) -> ReservationWithTicketResponse:
    return ReservationWithTicketResponse(
        reservation=ReservationResponse.model_validate(result.reservation),
        ticket_url=result.ticket_url,
        ticket_error=result.issuance_failure.message if result.issuance_failure else None,
    )


@router.post("/free", response_model=ReservationWithTicketResponse)
async def create_free_reservation(
    payload: ReservationCreate,
    user_id: UUID = Depends(get_current_user_id),
    service: ReservationService = Depends(get_reservation_service)
) -> Any:
    """
    Reserve a free event and issue its ticket.

    A reservation confirmed without a ticket still returns 200 with a null
    ticket_url; POST /reservations/{id}/ticket retries issuance.
    """
    outcome = await service.create_free_reservation(
        event_id=payload.event_id,
        user_id=user_id,
        booking_date=payload.booking_date,
        guest_size=payload.guest_size,
        seats=payload.seat_numbers,
    )
    if isinstance(outcome, Failure):
        return failure_response(outcome)
    return _with_ticket(outcome)


@router.post("/paid", response_model=ReservationResponse)
async def create_paid_reservation(
    payload: ReservationCreate,
    user_id: UUID = Depends(get_current_user_id),
    service: ReservationService = Depends(get_reservation_service)
) -> Any:
    """
    Hold seats for a paid event pending payment
    """
    outcome = await service.create_paid_reservation(
        event_id=payload.event_id,
        user_id=user_id,
        booking_date=payload.booking_date,
        guest_size=payload.guest_size,
        seats=payload.seat_numbers,
    )
    if isinstance(outcome, Failure):
        return failure_response(outcome)
    return outcome


@router.post(
    "/{reservation_id}/payment-confirmation",
    response_model=ReservationWithTicketResponse,
    dependencies=[Depends(verify_payment_callback)]
)
async def confirm_payment(
    reservation_id: UUID,
    payload: PaymentConfirmation,
    service: ReservationService = Depends(get_reservation_service)
) -> Any:
    """
    Payment processor success callback, signed with PAYMENT_CALLBACK_SECRET
    """
    outcome = await service.confirm_payment(reservation_id, payload.payment_reference)
    if isinstance(outcome, Failure):
        return failure_response(outcome)
    return _with_ticket(outcome)


@router.post("/{reservation_id}/ticket", response_model=TicketIssueResponse)
async def issue_ticket(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service)
) -> Any:
    """
    (Re)issue the ticket artifact for a confirmed reservation
    """
    outcome = await service.retry_issuance(reservation_id)
    if isinstance(outcome, Failure):
        return failure_response(outcome)
    return TicketIssueResponse(reservation_id=reservation_id, ticket_url=outcome)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service)
) -> Any:
    outcome = await service.get_reservation(reservation_id)
    if isinstance(outcome, Failure):
        return failure_response(outcome)
    return outcome

"""
Ticket verification endpoints used by venue scanners
"""

from typing import Any
from uuid import UUID
from fastapi import APIRouter, Depends

from turnstile.api.deps import get_current_user_id, get_reservation_service
from turnstile.api.responses import failure_response
from turnstile.core.exceptions import Failure
from turnstile.schemas.ticket import (
    CheckInResponse,
    TicketPayloadResponse,
    TicketScan,
    TicketVerificationResponse,
)
from turnstile.services.reservation_service import ReservationService

router = APIRouter()


@router.post("/verify", response_model=TicketVerificationResponse)
async def verify_ticket(
    scan: TicketScan,
    service: ReservationService = Depends(get_reservation_service)
) -> Any:
    outcome = await service.verify_ticket(scan.qr_data)
    if isinstance(outcome, Failure):
        return failure_response(outcome)
    return TicketVerificationResponse(
        ticket=TicketPayloadResponse.model_validate(outcome.payload),
        seat_numbers=outcome.seat_numbers,
    )


@router.post("/check-in", response_model=CheckInResponse)
async def check_in(
    scan: TicketScan,
    scanner_id: UUID = Depends(get_current_user_id),
    service: ReservationService = Depends(get_reservation_service)
) -> Any:
    """
    Admit a ticket holder; only the event organizer may scan
    """
    outcome = await service.check_in(scan.qr_data, scanner_id)
    if isinstance(outcome, Failure):
        return failure_response(outcome)
    return CheckInResponse(
        ticket=TicketPayloadResponse.model_validate(outcome.ticket.payload),
        seat_numbers=outcome.ticket.seat_numbers,
        already_checked_in=outcome.already_checked_in,
        checked_in_at=outcome.checked_in_at,
    )

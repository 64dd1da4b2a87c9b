"""
Pydantic schemas for request and response validation
"""

from turnstile.schemas.reservation import (
    ReservationCreate,
    PaymentConfirmation,
    ReservationResponse,
    ReservationWithTicketResponse,
    TicketIssueResponse
)
from turnstile.schemas.ticket import (
    TicketScan,
    TicketPayloadResponse,
    TicketVerificationResponse,
    CheckInResponse
)
from turnstile.schemas.response import (
    ErrorDetail,
    ErrorResponse
)

__all__ = [
    "ReservationCreate",
    "PaymentConfirmation",
    "ReservationResponse",
    "ReservationWithTicketResponse",
    "TicketIssueResponse",
    "TicketScan",
    "TicketPayloadResponse",
    "TicketVerificationResponse",
    "CheckInResponse",
    "ErrorDetail",
    "ErrorResponse",
]

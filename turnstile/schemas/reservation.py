"""
Reservation schemas
"""

from pydantic import Field, field_validator
from typing import List, Optional
from uuid import UUID
from datetime import date, datetime
from decimal import Decimal

from turnstile.schemas.base import BaseSchema, IDSchema, TimestampSchema
from turnstile.models.reservation import ReservationStatus, PaymentStatus


class ReservationCreate(BaseSchema):
    """Reservation request; the user comes from the X-User-Id header"""
    event_id: UUID
    booking_date: date
    guest_size: int = Field(1, ge=1)
    seat_numbers: List[str] = Field(default_factory=list)

    @field_validator('seat_numbers')
    @classmethod
    def strip_labels(cls, v: List[str]) -> List[str]:
        return [label.strip() for label in v]


class PaymentConfirmation(BaseSchema):
    """Payment-success callback hand-off"""
    payment_reference: Optional[str] = Field(None, max_length=255)


class ReservationResponse(IDSchema, TimestampSchema):
    event_id: UUID
    user_id: UUID
    booking_date: date
    seat_numbers: List[str]
    guest_size: int
    total_price: Decimal
    status: ReservationStatus
    payment_status: PaymentStatus
    payment_reference: Optional[str] = None
    ticket_url: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    hold_expires_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None


class ReservationWithTicketResponse(BaseSchema):
    """Reservation plus its ticket link; ticket_url is null when issuance must be retried"""
    reservation: ReservationResponse
    ticket_url: Optional[str] = None
    ticket_error: Optional[str] = None


class TicketIssueResponse(BaseSchema):
    reservation_id: UUID
    ticket_url: str

"""
Ticket verification schemas
"""

from pydantic import Field
from typing import List, Optional
from uuid import UUID
from datetime import date, datetime
from decimal import Decimal

from turnstile.schemas.base import BaseSchema


class TicketScan(BaseSchema):
    """Raw text read from the QR code"""
    qr_data: str = Field(..., min_length=1, max_length=4096)


class TicketPayloadResponse(BaseSchema):
    reservation_id: UUID
    event_name: str
    user_name: str
    date: date
    total_price: Decimal
    is_free: bool


class TicketVerificationResponse(BaseSchema):
    valid: bool = True
    ticket: TicketPayloadResponse
    seat_numbers: List[str]


class CheckInResponse(BaseSchema):
    valid: bool = True
    ticket: TicketPayloadResponse
    seat_numbers: List[str]
    already_checked_in: bool
    checked_in_at: Optional[datetime] = None

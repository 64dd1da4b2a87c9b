"""
Database models
"""

from turnstile.models.user import User
from turnstile.models.event import Event, TicketType
from turnstile.models.reservation import (
    SEAT_LABEL_MAX_LENGTH,
    Reservation,
    ReservationSeat,
    ReservationStatus,
    PaymentStatus
)

__all__ = [
    "User",
    "Event",
    "TicketType",
    "Reservation",
    "ReservationSeat",
    "ReservationStatus",
    "PaymentStatus",
    "SEAT_LABEL_MAX_LENGTH",
]

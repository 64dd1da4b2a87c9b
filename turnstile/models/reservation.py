"""
Reservation and ReservationSeat models
"""

from sqlalchemy import (
    Column, String, Integer, Date, DateTime, ForeignKey, Enum, Numeric, JSON, Uuid,
    UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
import enum

from turnstile.models.base import BaseModel


# Shared by the column and request validation
SEAT_LABEL_MAX_LENGTH = 32


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class Reservation(BaseModel):
    """
    A booked claim on event capacity for one user on one date
    """
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("total_price >= 0", name="ck_reservation_price_non_negative"),
        CheckConstraint("guest_size >= 1", name="ck_reservation_guest_size_positive"),
        Index("ix_reservations_event_date", "event_id", "booking_date"),
    )

    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    booking_date = Column(Date, nullable=False)
    seat_numbers = Column(JSON, nullable=False, default=list)
    guest_size = Column(Integer, nullable=False, default=1)
    total_price = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(
        Enum(ReservationStatus, values_callable=lambda e: [m.value for m in e]),
        default=ReservationStatus.PENDING,
        nullable=False,
        index=True
    )
    payment_status = Column(
        Enum(PaymentStatus, values_callable=lambda e: [m.value for m in e]),
        default=PaymentStatus.UNPAID,
        nullable=False
    )
    payment_reference = Column(String(255))  # Payment gateway reference
    ticket_url = Column(String(1024))
    confirmed_at = Column(DateTime(timezone=True))
    hold_expires_at = Column(DateTime(timezone=True))  # Pending payment holds only
    checked_in_at = Column(DateTime(timezone=True))

    # Relationships
    event = relationship("Event", back_populates="reservations")
    user = relationship("User", back_populates="reservations")
    seats = relationship("ReservationSeat", back_populates="reservation", cascade="all, delete-orphan")

    @property
    def is_confirmed(self) -> bool:
        return self.status == ReservationStatus.CONFIRMED

    def __repr__(self):
        return f"<Reservation(id={self.id}, event_id={self.event_id}, status={self.status}, seats={self.seat_numbers})>"


class ReservationSeat(BaseModel):
    """
    One held seat label. The unique constraint is the database-level
    guarantee against double booking on the same event and date; releasing a
    cancelled reservation deletes its rows.
    """
    __tablename__ = "reservation_seats"
    __table_args__ = (
        UniqueConstraint("event_id", "booking_date", "seat_label", name="uq_event_date_seat"),
    )

    reservation_id = Column(Uuid(as_uuid=True), ForeignKey("reservations.id"), nullable=False, index=True)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False)
    booking_date = Column(Date, nullable=False)
    seat_label = Column(String(SEAT_LABEL_MAX_LENGTH), nullable=False)

    reservation = relationship("Reservation", back_populates="seats")

    def __repr__(self):
        return f"<ReservationSeat(event_id={self.event_id}, date={self.booking_date}, seat={self.seat_label})>"

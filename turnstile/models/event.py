"""
Event model
"""

from sqlalchemy import Column, String, Integer, ForeignKey, Enum, Numeric, JSON, Uuid, CheckConstraint
from sqlalchemy.orm import relationship
import enum

from turnstile.models.base import BaseModel


class TicketType(str, enum.Enum):
    FREE = "Free"
    PAID = "Paid"


class Event(BaseModel):
    """
    Event with its ticket type and seat inventory.

    ``available_seats`` is the seat map still open for booking; an empty list
    means general admission. ``seats_version`` is bumped on every seat-set
    write so concurrent writers can compare-and-swap.
    """
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("ticket_price >= 0", name="ck_event_price_non_negative"),
        CheckConstraint("total_seats >= 0", name="ck_event_total_seats_non_negative"),
    )

    name = Column(String(255), nullable=False, index=True)
    ticket_type = Column(
        Enum(TicketType, values_callable=lambda e: [m.value for m in e]),
        default=TicketType.FREE,
        nullable=False
    )
    ticket_price = Column(Numeric(10, 2), nullable=False, default=0)
    total_seats = Column(Integer, nullable=False, default=0)
    available_seats = Column(JSON, nullable=False, default=list)
    seats_version = Column(Integer, nullable=False, default=0)
    organizer_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)

    # Relationships
    reservations = relationship("Reservation", back_populates="event")

    @property
    def is_free(self) -> bool:
        return self.ticket_type == TicketType.FREE

    def __repr__(self):
        return f"<Event(id={self.id}, name={self.name}, ticket_type={self.ticket_type}, available={len(self.available_seats or [])})>"

"""Store interfaces (repository pattern).

Stores are bound to one session, so every call made through a store instance
shares that session's transaction.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

from turnstile.models import Event, Reservation, User


class EventCatalog(ABC):
    """Event lookup and seat-set mutation."""

    @abstractmethod
    async def get_event(self, event_id: UUID) -> Optional[Event]:
        """Return an event by ID, or None if not found."""
        ...

    @abstractmethod
    async def read_seat_state(self, event_id: UUID) -> Optional[tuple[list[str], int]]:
        """Return the freshly read (available_seats, seats_version) of an event."""
        ...

    @abstractmethod
    async def update_available_seats(
        self, event_id: UUID, new_seats: list[str], expected_version: int
    ) -> bool:
        """Replace the seat set if its version is unchanged. False on a lost race."""
        ...


class UserDirectory(ABC):
    """Read-only access to user accounts."""

    @abstractmethod
    async def get_user(self, user_id: UUID) -> Optional[User]:
        ...


class ReservationStore(ABC):
    """Interface for reservation persistence operations."""

    @abstractmethod
    async def find_conflicts(
        self, event_id: UUID, booking_date: date, seats: Iterable[str]
    ) -> list[Reservation]:
        """Return non-cancelled reservations on the event/date holding any of ``seats``."""
        ...

    @abstractmethod
    async def find_expired_holds(
        self,
        now: datetime,
        event_id: Optional[UUID] = None,
        booking_date: Optional[date] = None,
        seats: Optional[Iterable[str]] = None
    ) -> list[Reservation]:
        """Return pending reservations whose payment hold ended at or before ``now``."""
        ...

    @abstractmethod
    async def release_holds(self, reservation_ids: Iterable[UUID]) -> int:
        """Cancel still-pending reservations and free their seat rows. Returns the number cancelled."""
        ...

    @abstractmethod
    async def held_labels(self, event_id: UUID, seats: Iterable[str]) -> set[str]:
        """Labels of ``seats`` held on any booking date of the event."""
        ...

    @abstractmethod
    async def insert(self, reservation: Reservation) -> Reservation:
        """Persist a reservation together with one hold row per seat label."""
        ...

    @abstractmethod
    async def get(self, reservation_id: UUID, for_update: bool = False) -> Optional[Reservation]:
        ...

    @abstractmethod
    async def mark_checked_in(self, reservation_id: UUID, at: datetime) -> bool:
        """Set the check-in time once. False if it was already set."""
        ...

    @abstractmethod
    async def update_by_id(
        self, reservation_id: UUID, patch: Mapping[str, Any]
    ) -> Optional[Reservation]:
        """Apply ``patch`` to a reservation. None if it does not exist."""
        ...

from turnstile.stores.interfaces import EventCatalog, ReservationStore, UserDirectory
from turnstile.stores.sqlalchemy_store import SqlEventCatalog, SqlReservationStore, SqlUserDirectory

__all__ = [
    "EventCatalog",
    "ReservationStore",
    "UserDirectory",
    "SqlEventCatalog",
    "SqlReservationStore",
    "SqlUserDirectory",
]

"""
API endpoints module
"""

from . import reservations, tickets

__all__ = [
    "reservations",
    "tickets"
]

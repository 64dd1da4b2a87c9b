"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter
from turnstile.api.responses import ERROR_RESPONSES
from turnstile.api.v1.endpoints import reservations, tickets

api_router = APIRouter(responses=ERROR_RESPONSES)

api_router.include_router(reservations.router, prefix="/reservations", tags=["reservations"])
api_router.include_router(tickets.router, prefix="/tickets", tags=["tickets"])

"""
Shared API dependencies
"""

from typing import Optional
from uuid import UUID
import logging

from fastapi import Header, Request

from turnstile.config import settings
from turnstile.core.exceptions import MisconfiguredSecretError, PaymentSignatureError
from turnstile.core.security import verify_payment_signature
from turnstile.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)


def get_reservation_service(request: Request) -> ReservationService:
    return request.app.state.reservation_service


def get_current_user_id(x_user_id: UUID = Header(..., alias="X-User-Id")) -> UUID:
    """Caller identity as established by the upstream auth gateway"""
    return x_user_id


async def verify_payment_callback(
    request: Request,
    x_payment_signature: Optional[str] = Header(None, alias="X-Payment-Signature")
) -> None:
    """Reject payment callbacks whose body is not signed with the shared secret"""
    secret = settings.PAYMENT_CALLBACK_SECRET
    if not secret:
        logger.error("PAYMENT_CALLBACK_SECRET is not set; refusing payment callback")
        raise MisconfiguredSecretError("Payment callback secret is not configured")

    body = await request.body()
    if not verify_payment_signature(secret, body, x_payment_signature):
        logger.warning(f"Rejected payment callback for {request.url.path}: bad signature")
        raise PaymentSignatureError()

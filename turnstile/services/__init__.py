"""
Service construction from settings
"""

from datetime import timedelta
from typing import Optional
import asyncio
import logging

from turnstile.config import Settings
from turnstile.core.database import DatabaseManager, db_manager
from turnstile.core.locks import KeyedLock, LocalKeyedLock, RedisKeyedLock
from turnstile.core.redis import get_redis
from turnstile.services.artifact_store import ArtifactStore, build_artifact_store
from turnstile.services.reservation_engine import ReservationEngine
from turnstile.services.reservation_service import ReservationService
from turnstile.services.ticket_codec import TicketCodec
from turnstile.services.ticket_service import TicketIssuer

logger = logging.getLogger(__name__)


async def build_seat_lock(settings: Settings) -> KeyedLock:
    if settings.SEAT_LOCK_BACKEND == "redis":
        return RedisKeyedLock(
            await get_redis(),
            ttl_seconds=settings.SEAT_LOCK_TTL_SECONDS,
            timeout=settings.SEAT_LOCK_TIMEOUT_SECONDS,
        )
    return LocalKeyedLock(timeout=settings.SEAT_LOCK_TIMEOUT_SECONDS)


async def build_reservation_service(
    settings: Settings,
    db: DatabaseManager = db_manager,
    seat_lock: Optional[KeyedLock] = None,
    artifact_store: Optional[ArtifactStore] = None,
    codec: Optional[TicketCodec] = None
) -> ReservationService:
    """
    Wire the reservation core. Raises MisconfiguredSecretError when the
    ticket secret is required but missing, so a bad deployment fails at startup.
    """
    codec = codec or TicketCodec.from_settings(settings)
    engine = ReservationEngine(
        db,
        seat_lock or await build_seat_lock(settings),
        max_seats=settings.MAX_SEATS_PER_RESERVATION,
        hold_ttl=timedelta(minutes=settings.PAYMENT_HOLD_MINUTES),
    )
    issuer = TicketIssuer(
        db,
        codec,
        artifact_store or build_artifact_store(settings),
        timeout=settings.ISSUANCE_TIMEOUT_SECONDS,
        upload_attempts=settings.ISSUANCE_UPLOAD_ATTEMPTS,
    )
    return ReservationService(db, engine, issuer, codec)


async def sweep_holds_periodically(service: ReservationService, interval_seconds: float) -> None:
    """Release expired payment holds every ``interval_seconds`` until cancelled"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            released = await service.release_expired_holds()
            if released:
                logger.info(f"Released {released} expired payment holds")
        except Exception as e:
            logger.error(f"Error in payment hold sweep: {e}", exc_info=True)

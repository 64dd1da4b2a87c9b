"""
Ticket Issuance Service
Turns a confirmed reservation into a scannable QR ticket stored as an artifact
"""

import qrcode
from contextlib import contextmanager
from io import BytesIO
from typing import Union
from uuid import UUID
import asyncio
import logging

from turnstile.config import settings
from turnstile.core.database import DatabaseManager
from turnstile.core.exceptions import Failure, IssuanceStage
from turnstile.core.metrics import metrics_collector
from turnstile.models import Reservation, ReservationStatus
from turnstile.services.artifact_store import ArtifactStore
from turnstile.services.ticket_codec import TicketCodec
from turnstile.stores import SqlEventCatalog, SqlReservationStore, SqlUserDirectory

logger = logging.getLogger(__name__)


class TicketGenerator:
    """Renders ticket payloads as QR code images"""

    @staticmethod
    def generate_qr_code(
        data: str,
        box_size: int = settings.QR_BOX_SIZE,
        border: int = settings.QR_BORDER
    ) -> bytes:
        """Generate a PNG QR code for ticket validation"""
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=box_size,
            border=border,
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        with BytesIO() as buffer:
            img.save(buffer, format="PNG")
            return buffer.getvalue()


class _StageFailed(Exception):
    def __init__(self, stage: IssuanceStage):
        self.stage = stage


class TicketIssuer:
    """
    Issuance pipeline: encode, render, upload, persist.

    Runs outside the seat lock and never touches seat inventory. The artifact
    key depends only on the reservation id, so a retry overwrites the previous
    image and the stored URL stays the same.
    """

    def __init__(
        self,
        db: DatabaseManager,
        codec: TicketCodec,
        artifact_store: ArtifactStore,
        generator: TicketGenerator = TicketGenerator(),
        timeout: float = settings.ISSUANCE_TIMEOUT_SECONDS,
        upload_attempts: int = settings.ISSUANCE_UPLOAD_ATTEMPTS,
        retry_backoff: float = 0.2
    ):
        self.db = db
        self.codec = codec
        self.artifact_store = artifact_store
        self.generator = generator
        self.timeout = timeout
        self.upload_attempts = max(1, upload_attempts)
        self.retry_backoff = retry_backoff

    @staticmethod
    def artifact_key(reservation_id: UUID) -> str:
        return f"tickets/reservation_{reservation_id}.png"

    async def issue(self, reservation: Union[Reservation, UUID]) -> Union[str, Failure]:
        reservation_id = reservation.id if isinstance(reservation, Reservation) else reservation
        try:
            url = await self._run(reservation_id)
        except _StageFailed as failed:
            metrics_collector.record_issuance("failed", failed.stage.value)
            return Failure.issuance_failed(failed.stage, reservation_id)

        metrics_collector.record_issuance("issued")
        logger.info(f"Ticket issued for reservation {reservation_id}", extra={"ticket_url": url})
        return url

    async def _run(self, reservation_id: UUID) -> str:
        reservation, event_name, user_name, is_free = await self._load_confirmed(reservation_id)

        with self._stage(IssuanceStage.ENCODE, reservation_id):
            envelope = self.codec.wrap(
                self.codec.encode(reservation, event_name, user_name, is_free=is_free)
            )

        with self._stage(IssuanceStage.RENDER, reservation_id):
            image = await asyncio.to_thread(self.generator.generate_qr_code, envelope)

        url = await self._upload(image, self.artifact_key(reservation_id), reservation_id)

        with self._stage(IssuanceStage.PERSIST, reservation_id):
            updated = await asyncio.wait_for(self._attach(reservation_id, url), self.timeout)
        if updated is None:
            logger.error(f"Reservation {reservation_id} vanished before its ticket was attached")
            raise _StageFailed(IssuanceStage.PERSIST)
        return url

    async def _load_confirmed(self, reservation_id: UUID):
        # Read back from the store: the payload must describe the committed row
        with self._stage(IssuanceStage.PRECONDITION, reservation_id):
            row = await asyncio.wait_for(self._fetch(reservation_id), self.timeout)
        if row is None:
            logger.warning(f"Cannot issue ticket: reservation {reservation_id} not found")
            raise _StageFailed(IssuanceStage.PRECONDITION)
        reservation, event, user = row
        if reservation.status != ReservationStatus.CONFIRMED:
            logger.warning(
                f"Cannot issue ticket: reservation {reservation_id} is {reservation.status.value}"
            )
            raise _StageFailed(IssuanceStage.PRECONDITION)
        return reservation, event.name, user.username, event.is_free

    async def _fetch(self, reservation_id: UUID):
        async with self.db.read_session() as session:
            reservation = await SqlReservationStore(session).get(reservation_id)
            if reservation is None:
                return None
            event = await SqlEventCatalog(session).get_event(reservation.event_id)
            user = await SqlUserDirectory(session).get_user(reservation.user_id)
            if event is None or user is None:
                return None
            return reservation, event, user

    async def _attach(self, reservation_id: UUID, url: str):
        async with self.db.atomic_transaction() as session:
            return await SqlReservationStore(session).update_by_id(reservation_id, {"ticket_url": url})

    async def _upload(self, image: bytes, key: str, reservation_id: UUID) -> str:
        for attempt in range(1, self.upload_attempts + 1):
            try:
                result = await asyncio.wait_for(
                    self.artifact_store.upload(image, key), self.timeout
                )
                return result.url
            except Exception as e:
                logger.warning(
                    f"Ticket upload attempt {attempt}/{self.upload_attempts} failed "
                    f"for reservation {reservation_id}: {type(e).__name__}: {e}"
                )
                if attempt == self.upload_attempts:
                    raise _StageFailed(IssuanceStage.UPLOAD) from e
                await asyncio.sleep(self.retry_backoff * (2 ** (attempt - 1)))

    @contextmanager
    def _stage(self, stage: IssuanceStage, reservation_id: UUID):
        try:
            yield
        except _StageFailed:
            raise
        except Exception as e:
            logger.error(
                f"Ticket issuance failed at {stage.value} for reservation "
                f"{reservation_id}: {type(e).__name__}: {e}"
            )
            raise _StageFailed(stage) from e

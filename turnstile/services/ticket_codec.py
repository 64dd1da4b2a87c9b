"""
Ticket payload encryption

A ticket payload is the reservation's identifying fields serialized as
compact JSON and sealed with AES-256-GCM. The wire format is
``<nonce hex>:<ciphertext+tag hex>``; the GCM tag makes any edit to the
ciphertext fail decryption instead of yielding different data.

The scanned QR code carries an outer envelope,
``{"errorMessage": ..., "data": <wire format>}``, so a generic scanner app can
show a readable message instead of ciphertext.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional, Union
from uuid import UUID
import json
import logging
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from turnstile.config import Settings
from turnstile.core.exceptions import Failure, MisconfiguredSecretError
from turnstile.models import Reservation

logger = logging.getLogger(__name__)

# Development-only key. Used only when ALLOW_INSECURE_TICKET_KEY is set outside production.
FALLBACK_TICKET_KEY = "7475726e7374696c652d696e7365637572652d6465762d6b65792d3030303031"

NONCE_BYTES = 12
KEY_BYTES = 32
SEPARATOR = ":"
ASSOCIATED_DATA = b"turnstile.ticket.v1"

_PAYLOAD_KEYS = frozenset({"bookingId", "event", "user", "date", "totalPrice", "isFree"})
_NONCE_HEX = re.compile(r"[0-9a-f]{%d}" % (NONCE_BYTES * 2))
_CIPHER_HEX = re.compile(r"(?:[0-9a-f]{2})+")


@dataclass(frozen=True)
class TicketPayload:
    """Identifying data carried inside a ticket"""

    reservation_id: UUID
    event_name: str
    user_name: str
    date: date
    total_price: Decimal
    is_free: bool

    def to_wire_dict(self) -> dict:
        return {
            "bookingId": str(self.reservation_id),
            "event": self.event_name,
            "user": self.user_name,
            "date": self.date.isoformat(),
            "totalPrice": f"{self.total_price:.2f}",
            "isFree": self.is_free,
        }

    @classmethod
    def from_wire_dict(cls, data: dict) -> "TicketPayload":
        """Strict schema check; raises ValueError/TypeError on any mismatch."""
        if not isinstance(data, dict) or set(data) != _PAYLOAD_KEYS:
            raise ValueError("unexpected payload keys")
        for key in ("bookingId", "event", "user", "date", "totalPrice"):
            if not isinstance(data[key], str):
                raise TypeError(f"{key} must be a string")
        if not isinstance(data["isFree"], bool):
            raise TypeError("isFree must be a boolean")
        try:
            price = Decimal(data["totalPrice"])
        except InvalidOperation:
            raise ValueError("totalPrice is not a decimal")
        if not price.is_finite() or price < 0:
            raise ValueError("totalPrice out of range")
        return cls(
            reservation_id=UUID(data["bookingId"]),
            event_name=data["event"],
            user_name=data["user"],
            date=date.fromisoformat(data["date"]),
            total_price=price,
            is_free=data["isFree"],
        )


class TicketCodec:
    """
    Encrypts and decrypts ticket payloads with a key fixed at construction.

    A missing key is only tolerated when ``allow_fallback`` is true; a key that
    is present but not 64 hex characters is always rejected.
    """

    def __init__(
        self,
        secret_key: Optional[str],
        allow_fallback: bool = False,
        invalid_message: str = "Invalid QR code. Please contact the event organizer."
    ):
        if not secret_key:
            if not allow_fallback:
                raise MisconfiguredSecretError()
            logger.warning("TICKET_SECRET_KEY not set; using the insecure development key")
            secret_key = FALLBACK_TICKET_KEY
        try:
            key = bytes.fromhex(secret_key)
        except ValueError:
            raise MisconfiguredSecretError("Ticket encryption secret must be hex encoded")
        if len(key) != KEY_BYTES:
            raise MisconfiguredSecretError(
                f"Ticket encryption secret must be {KEY_BYTES * 2} hex characters"
            )
        self._aead = AESGCM(key)
        self.invalid_message = invalid_message

    @classmethod
    def from_settings(cls, settings: Settings) -> "TicketCodec":
        return cls(
            secret_key=settings.TICKET_SECRET_KEY,
            allow_fallback=settings.ALLOW_INSECURE_TICKET_KEY and not settings.is_production,
            invalid_message=settings.TICKET_INVALID_MESSAGE,
        )

    def encode(
        self,
        reservation: Reservation,
        event_name: str,
        user_name: str,
        is_free: Optional[bool] = None
    ) -> str:
        total_price = Decimal(reservation.total_price or 0)
        payload = TicketPayload(
            reservation_id=reservation.id,
            event_name=event_name,
            user_name=user_name,
            date=reservation.booking_date,
            total_price=total_price,
            is_free=(total_price == 0) if is_free is None else is_free,
        )
        return self.encrypt(payload)

    def encrypt(self, payload: TicketPayload) -> str:
        plaintext = json.dumps(
            payload.to_wire_dict(), separators=(",", ":"), sort_keys=True
        ).encode("utf-8")
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = self._aead.encrypt(nonce, plaintext, ASSOCIATED_DATA)
        return f"{nonce.hex()}{SEPARATOR}{ciphertext.hex()}"

    def decode(self, token: str) -> Union[TicketPayload, Failure]:
        if not isinstance(token, str):
            return Failure.invalid_ticket()
        parts = token.split(SEPARATOR)
        if len(parts) != 2:
            logger.debug("Ticket rejected: malformed separator")
            return Failure.invalid_ticket()
        nonce_hex, cipher_hex = parts
        # Lowercase only, so a case flip is a different token, not the same bytes
        if not _NONCE_HEX.fullmatch(nonce_hex) or not _CIPHER_HEX.fullmatch(cipher_hex):
            logger.debug("Ticket rejected: malformed hex")
            return Failure.invalid_ticket()
        try:
            plaintext = self._aead.decrypt(
                bytes.fromhex(nonce_hex), bytes.fromhex(cipher_hex), ASSOCIATED_DATA
            )
        except InvalidTag:
            logger.debug("Ticket rejected: authentication failed")
            return Failure.invalid_ticket()
        try:
            return TicketPayload.from_wire_dict(json.loads(plaintext.decode("utf-8")))
        except (ValueError, TypeError):
            logger.debug("Ticket rejected: schema mismatch")
            return Failure.invalid_ticket()

    def wrap(self, token: str) -> str:
        """Outer envelope embedded in the rendered QR code"""
        return json.dumps({"errorMessage": self.invalid_message, "data": token})

    def unwrap(self, scanned: str) -> Union[str, Failure]:
        try:
            envelope = json.loads(scanned)
        except (TypeError, ValueError):
            return Failure.invalid_ticket()
        if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), str):
            return Failure.invalid_ticket()
        return envelope["data"]

    def read(self, scanned: str) -> Union[TicketPayload, Failure]:
        """Unwrap and decode a scanned QR code in one step"""
        token = self.unwrap(scanned)
        if isinstance(token, Failure):
            return token
        return self.decode(token)

"""
Application exceptions and expected failure outcomes

Expected, frequent outcomes (seat conflicts, unknown events, tampered tickets)
are returned as ``Failure`` values. Exceptional states (store failures, a
missing encryption secret, lock timeouts) are raised as ``TurnstileException``.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any
import enum


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    SEAT_CONFLICT = "SEAT_CONFLICT"
    MISCONFIGURED_SECRET = "MISCONFIGURED_SECRET"
    INVALID_TICKET = "INVALID_TICKET"
    ISSUANCE_FAILED = "ISSUANCE_FAILED"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    FORBIDDEN = "FORBIDDEN"


class IssuanceStage(str, enum.Enum):
    PRECONDITION = "precondition"
    ENCODE = "encode"
    RENDER = "render"
    UPLOAD = "upload"
    PERSIST = "persist"


@dataclass(frozen=True)
class Failure:
    """Tagged failure outcome with a user-safe message"""

    kind: ErrorKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def not_found(cls, resource: str, identifier: Any = None) -> "Failure":
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id {identifier} not found"
        return cls(ErrorKind.NOT_FOUND, message)

    @classmethod
    def invalid_request(cls, message: str, field_name: Optional[str] = None) -> "Failure":
        details = {"field": field_name} if field_name else {}
        return cls(ErrorKind.INVALID_REQUEST, message, details)

    @classmethod
    def seat_conflict(cls, seats) -> "Failure":
        return cls(
            ErrorKind.SEAT_CONFLICT,
            "Some of the selected seats are already reserved",
            {"conflicting_seats": sorted(set(seats))},
        )

    @classmethod
    def invalid_ticket(cls) -> "Failure":
        # Never say why: no partial plaintext, no cause
        return cls(ErrorKind.INVALID_TICKET, "Invalid ticket")

    @classmethod
    def issuance_failed(cls, stage: IssuanceStage, reservation_id: Any) -> "Failure":
        return cls(
            ErrorKind.ISSUANCE_FAILED,
            f"Ticket issuance failed during {stage.value}",
            {"stage": stage.value, "reservation_id": str(reservation_id)},
        )

    @classmethod
    def forbidden(cls, message: str = "Not authorized") -> "Failure":
        return cls(ErrorKind.FORBIDDEN, message)

    @property
    def stage(self) -> Optional[str]:
        return self.details.get("stage")


class TurnstileException(Exception):
    """Base exception for Turnstile application"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class PersistenceError(TurnstileException):
    """Store-level failure; aborts the current reservation attempt"""

    def __init__(self, operation: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Persistence failure during {operation}",
            code=ErrorKind.PERSISTENCE_ERROR.value,
            status_code=503,
            details={"operation": operation}
        )


class MisconfiguredSecretError(TurnstileException):
    """Ticket encryption secret missing or invalid where it is required"""

    def __init__(self, message: str = "Ticket encryption secret is not configured"):
        super().__init__(
            message=message,
            code=ErrorKind.MISCONFIGURED_SECRET.value,
            status_code=500
        )


class LockAcquisitionError(TurnstileException):
    """Failed to acquire lock error"""

    def __init__(self, resource: str):
        super().__init__(
            message=f"Failed to acquire lock for resource: {resource}",
            code="LOCK_FAILED",
            status_code=409,
            details={"resource": resource, "retry_after": 1}
        )


class ArtifactStoreError(TurnstileException):
    """Artifact store rejected or failed an upload"""

    def __init__(self, key: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Artifact upload failed for {key}",
            code="EXTERNAL_SERVICE_ERROR",
            status_code=503,
            details={"key": key}
        )


class PaymentSignatureError(TurnstileException):
    """Payment callback without a valid signature"""

    def __init__(self, message: str = "Invalid payment callback signature"):
        super().__init__(
            message=message,
            code="UNAUTHORIZED",
            status_code=401
        )

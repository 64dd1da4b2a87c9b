"""
HTTP API tests
Status codes, error bodies, ticket verification and check-in
"""

import pytest
from decimal import Decimal
from uuid import UUID, uuid4

from turnstile.config import settings
from turnstile.models import Reservation

from turnstile.main import app

from conftest import EVENT_DATE, fetch, scan_text, signed

API = settings.API_PREFIX


def headers(user):
    return {"X-User-Id": str(user.id)}


def reservation_body(event, seats=("A1",), guest_size=None):
    return {
        "event_id": str(event.id),
        "booking_date": EVENT_DATE.isoformat(),
        "guest_size": guest_size if guest_size is not None else max(1, len(seats)),
        "seat_numbers": list(seats),
    }


class TestReservationEndpoints:

    async def test_free_reservation(self, client, free_event, attendee):
        response = await client.post(
            f"{API}/reservations/free", json=reservation_body(free_event), headers=headers(attendee)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["reservation"]["status"] == "confirmed"
        assert data["reservation"]["user_id"] == str(attendee.id)
        assert data["reservation"]["seat_numbers"] == ["A1"]
        assert data["ticket_url"].endswith(f"reservation_{data['reservation']['id']}.png")
        assert data["ticket_error"] is None

    async def test_seat_conflict_is_409(self, client, free_event, attendee, other_attendee):
        await client.post(
            f"{API}/reservations/free", json=reservation_body(free_event), headers=headers(attendee)
        )
        response = await client.post(
            f"{API}/reservations/free",
            json=reservation_body(free_event, seats=("A1", "A2")),
            headers=headers(other_attendee),
        )

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "SEAT_CONFLICT"
        assert error["details"]["conflicting_seats"] == ["A1"]

    async def test_unknown_event_is_404(self, client, free_event, attendee):
        body = reservation_body(free_event)
        body["event_id"] = str(uuid4())
        response = await client.post(f"{API}/reservations/free", json=body, headers=headers(attendee))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_wrong_flow_is_400(self, client, paid_event, attendee):
        response = await client.post(
            f"{API}/reservations/free",
            json=reservation_body(paid_event, seats=("B1",)),
            headers=headers(attendee),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"

    async def test_more_seats_than_guests_is_400(self, client, free_event, attendee):
        response = await client.post(
            f"{API}/reservations/free",
            json=reservation_body(free_event, seats=("A1", "A2"), guest_size=1),
            headers=headers(attendee),
        )
        assert response.status_code == 400

    async def test_missing_user_header_is_rejected(self, client, free_event):
        response = await client.post(f"{API}/reservations/free", json=reservation_body(free_event))
        assert response.status_code == 422

    async def test_zero_guests_is_rejected(self, client, free_event, attendee):
        response = await client.post(
            f"{API}/reservations/free",
            json=reservation_body(free_event, seats=(), guest_size=0),
            headers=headers(attendee),
        )
        assert response.status_code == 422

    async def test_paid_flow_end_to_end(self, client, paid_event, attendee):
        created = await client.post(
            f"{API}/reservations/paid",
            json=reservation_body(paid_event, seats=("B1", "B2")),
            headers=headers(attendee),
        )
        assert created.status_code == 200
        reservation = created.json()
        assert reservation["status"] == "pending"
        assert reservation["payment_status"] == "unpaid"
        assert reservation["hold_expires_at"] is not None
        assert Decimal(str(reservation["total_price"])) == Decimal("100.00")

        body, callback_headers = signed({"payment_reference": "pi_123"})
        confirmed = await client.post(
            f"{API}/reservations/{reservation['id']}/payment-confirmation",
            content=body,
            headers=callback_headers,
        )
        assert confirmed.status_code == 200
        assert confirmed.json()["reservation"]["status"] == "confirmed"
        assert confirmed.json()["reservation"]["hold_expires_at"] is None
        assert confirmed.json()["ticket_url"] is not None

        fetched = await client.get(f"{API}/reservations/{reservation['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["payment_reference"] == "pi_123"
        assert fetched.json()["ticket_url"] == confirmed.json()["ticket_url"]

    async def test_confirm_unknown_reservation_is_404(self, client):
        body, callback_headers = signed({})
        response = await client.post(
            f"{API}/reservations/{uuid4()}/payment-confirmation", content=body, headers=callback_headers
        )
        assert response.status_code == 404

    async def test_unknown_user_is_404(self, client, free_event):
        response = await client.post(
            f"{API}/reservations/free",
            json=reservation_body(free_event),
            headers={"X-User-Id": str(uuid4())},
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_overlong_seat_label_is_400(self, client, free_event, attendee):
        response = await client.post(
            f"{API}/reservations/free",
            json=reservation_body(free_event, seats=("A" * 33,)),
            headers=headers(attendee),
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "seats"

    async def test_get_unknown_reservation_is_404(self, client):
        response = await client.get(f"{API}/reservations/{uuid4()}")
        assert response.status_code == 404


class TestPaymentCallbackSignature:

    @pytest.fixture
    def pending(self, client, paid_event, attendee):
        async def _pending():
            response = await client.post(
                f"{API}/reservations/paid",
                json=reservation_body(paid_event, seats=("B1",)),
                headers=headers(attendee),
            )
            return response.json()["id"]
        return _pending

    async def test_unsigned_callback_is_401(self, client, pending):
        reservation_id = await pending()

        response = await client.post(
            f"{API}/reservations/{reservation_id}/payment-confirmation",
            json={"payment_reference": "pi_123"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"
        fetched = await client.get(f"{API}/reservations/{reservation_id}")
        assert fetched.json()["status"] == "pending"

    async def test_wrong_secret_is_401(self, client, pending):
        reservation_id = await pending()
        body, callback_headers = signed({"payment_reference": "pi_123"}, secret="not-the-secret")

        response = await client.post(
            f"{API}/reservations/{reservation_id}/payment-confirmation",
            content=body,
            headers=callback_headers,
        )

        assert response.status_code == 401

    async def test_signature_covers_body(self, client, pending):
        reservation_id = await pending()
        _, callback_headers = signed({"payment_reference": "pi_123"})

        response = await client.post(
            f"{API}/reservations/{reservation_id}/payment-confirmation",
            content=b'{"payment_reference": "pi_999"}',
            headers=callback_headers,
        )

        assert response.status_code == 401

    async def test_signed_callback_confirms(self, client, pending):
        reservation_id = await pending()
        body, callback_headers = signed({"payment_reference": "pi_123"})

        response = await client.post(
            f"{API}/reservations/{reservation_id}/payment-confirmation",
            content=body,
            headers=callback_headers,
        )

        assert response.status_code == 200
        assert response.json()["reservation"]["payment_reference"] == "pi_123"

    async def test_missing_secret_refuses_callbacks(self, client, pending, monkeypatch):
        reservation_id = await pending()
        body, callback_headers = signed({"payment_reference": "pi_123"})
        monkeypatch.setattr(settings, "PAYMENT_CALLBACK_SECRET", None)

        response = await client.post(
            f"{API}/reservations/{reservation_id}/payment-confirmation",
            content=body,
            headers=callback_headers,
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "MISCONFIGURED_SECRET"


class TestTicketRetryEndpoint:

    async def test_retry_after_outage(self, client, artifact_store, free_event, attendee):
        artifact_store.failures_remaining = 2
        created = await client.post(
            f"{API}/reservations/free", json=reservation_body(free_event), headers=headers(attendee)
        )
        assert created.status_code == 200
        data = created.json()
        assert data["ticket_url"] is None
        assert data["ticket_error"] is not None

        reservation_id = data["reservation"]["id"]
        retried = await client.post(f"{API}/reservations/{reservation_id}/ticket")
        assert retried.status_code == 200
        assert retried.json()["reservation_id"] == reservation_id
        assert retried.json()["ticket_url"].endswith(f"reservation_{reservation_id}.png")

    async def test_failed_issuance_is_502(self, client, artifact_store, free_event, attendee):
        artifact_store.failures_remaining = 4
        created = await client.post(
            f"{API}/reservations/free", json=reservation_body(free_event), headers=headers(attendee)
        )
        reservation_id = created.json()["reservation"]["id"]

        response = await client.post(f"{API}/reservations/{reservation_id}/ticket")

        assert response.status_code == 502
        error = response.json()["error"]
        assert error["code"] == "ISSUANCE_FAILED"
        assert error["details"]["stage"] == "upload"

    async def test_pending_reservation_is_409_precondition(self, client, paid_event, attendee):
        created = await client.post(
            f"{API}/reservations/paid",
            json=reservation_body(paid_event, seats=("B1",)),
            headers=headers(attendee),
        )
        response = await client.post(f"{API}/reservations/{created.json()['id']}/ticket")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ISSUANCE_FAILED"
        assert response.json()["error"]["details"]["stage"] == "precondition"


class TestTicketEndpoints:

    @pytest.fixture
    def reserve(self, client, free_event, attendee):
        async def _reserve():
            response = await client.post(
                f"{API}/reservations/free",
                json=reservation_body(free_event),
                headers=headers(attendee),
            )
            return response.json()["reservation"]["id"]
        return _reserve

    async def _scan(self, db, codec, reservation_id, event, user):
        reservation = await fetch(db, Reservation, UUID(reservation_id))
        return scan_text(codec, reservation, event, user)

    async def test_verify_valid_ticket(self, client, db, codec, reserve, free_event, attendee):
        reservation_id = await reserve()
        qr_data = await self._scan(db, codec, reservation_id, free_event, attendee)

        response = await client.post(f"{API}/tickets/verify", json={"qr_data": qr_data})

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["ticket"]["reservation_id"] == reservation_id
        assert data["ticket"]["event_name"] == "E1"
        assert data["ticket"]["user_name"] == "alice"
        assert data["ticket"]["is_free"] is True
        assert data["seat_numbers"] == ["A1"]

    async def test_tampered_ticket_is_400(self, client, db, codec, reserve, free_event, attendee):
        reservation_id = await reserve()
        reservation = await fetch(db, Reservation, UUID(reservation_id))
        token = codec.encode(reservation, free_event.name, attendee.username, is_free=True)
        tampered = token[:-1] + ("0" if token[-1] != "0" else "1")

        response = await client.post(
            f"{API}/tickets/verify", json={"qr_data": codec.wrap(tampered)}
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_TICKET"
        assert error["message"] == "Invalid ticket"

    async def test_ticket_not_matching_records_is_400(self, client, db, codec, reserve, attendee):
        reservation_id = await reserve()
        reservation = await fetch(db, Reservation, UUID(reservation_id))
        forged = codec.wrap(codec.encode(reservation, "Another Event", attendee.username))

        response = await client.post(f"{API}/tickets/verify", json={"qr_data": forged})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TICKET"

    async def test_ticket_with_wrong_ticket_type_is_400(self, client, db, codec, reserve, free_event, attendee):
        reservation_id = await reserve()
        reservation = await fetch(db, Reservation, UUID(reservation_id))
        forged = codec.wrap(codec.encode(reservation, free_event.name, attendee.username, is_free=False))

        response = await client.post(f"{API}/tickets/verify", json={"qr_data": forged})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TICKET"

    async def test_check_in_requires_organizer(
        self, client, db, codec, reserve, free_event, attendee, other_attendee
    ):
        reservation_id = await reserve()
        qr_data = await self._scan(db, codec, reservation_id, free_event, attendee)

        response = await client.post(
            f"{API}/tickets/check-in", json={"qr_data": qr_data}, headers=headers(other_attendee)
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    async def test_check_in_once(self, client, db, codec, reserve, free_event, attendee, organizer):
        reservation_id = await reserve()
        qr_data = await self._scan(db, codec, reservation_id, free_event, attendee)

        first = await client.post(
            f"{API}/tickets/check-in", json={"qr_data": qr_data}, headers=headers(organizer)
        )
        second = await client.post(
            f"{API}/tickets/check-in", json={"qr_data": qr_data}, headers=headers(organizer)
        )

        assert first.status_code == 200
        assert first.json()["already_checked_in"] is False
        assert first.json()["checked_in_at"] is not None
        assert second.status_code == 200
        assert second.json()["already_checked_in"] is True
        assert second.json()["checked_in_at"] == first.json()["checked_in_at"]


class TestOpenAPI:

    def test_error_envelope_is_documented(self):
        schema = app.openapi()
        responses = schema["paths"][f"{API}/reservations/free"]["post"]["responses"]

        assert "409" in responses
        assert responses["409"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
        assert "ErrorResponse" in schema["components"]["schemas"]


class TestHealth:

    async def test_liveness(self, client):
        response = await client.get("/health/live")
        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

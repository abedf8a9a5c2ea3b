"""
Tests for the provider client, driven through httpx.MockTransport.
"""

import json
import time

import httpx
import pytest

from marina_api.config import Settings
from marina_api.services.provider_client import (
    IDEMPOTENCY_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    ProviderClient,
    ProviderMalformedResponse,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
    build_provider_payload,
    extract_booking_id,
    sign_body,
    verify_signature,
)

PAYLOAD = {"bookingType": "room", "dates": ["2025-06-01", "2025-06-03"], "email": "ana@example.com"}


def client_for(handler, signing_secret=""):
    return ProviderClient(
        create_url="https://provider.test/create-booking",
        signing_secret=signing_secret,
        timeout=2.0,
        request_id="test",
        transport=httpx.MockTransport(handler)
    )


def json_response(status_code, data):
    return lambda request: httpx.Response(status_code, json=data)


class TestExtractBookingId:
    @pytest.mark.parametrize("data,expected", [
        ({"booking_id": 123}, "123"),
        ({"bookingId": "A-9"}, "A-9"),
        ({"success": True, "data": {"id": 77}}, "77"),
        ({"result": {"booking": "55"}}, "55"),
        (456, "456"),
        ("  789 ", "789"),
        (12.0, "12"),
    ])
    def test_accepted_shapes(self, data, expected):
        assert extract_booking_id(data) == expected

    @pytest.mark.parametrize("data", [None, True, 0, -3, "", {"success": True}, {"id": False}, [1, 2]])
    def test_unusable_values(self, data):
        assert extract_booking_id(data) is None


class TestSignature:
    def test_round_trip(self):
        ts = str(int(time.time()))
        sig = sign_body("s3cret", ts, b'{"a":1}')

        assert sig.startswith("sha256=")
        assert verify_signature("s3cret", ts, b'{"a":1}', sig)

    def test_tampered_body(self):
        ts = str(int(time.time()))
        sig = sign_body("s3cret", ts, b'{"a":1}')

        assert not verify_signature("s3cret", ts, b'{"a":2}', sig)

    def test_stale_timestamp(self):
        ts = "1000"
        sig = sign_body("s3cret", ts, b"{}")

        assert not verify_signature("s3cret", ts, b"{}", sig, max_age_seconds=300, now=2000)

    def test_missing_parts(self):
        assert not verify_signature("s3cret", None, b"{}", "sha256=x")
        assert not verify_signature("s3cret", "abc", b"{}", "sha256=x")
        assert not verify_signature("", "1", b"{}", "sha256=x")


class TestCreateBooking:
    def test_success_sends_idempotency_key_and_signature(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={"success": True, "booking_id": 321})

        booking = client_for(handler, signing_secret="s3cret").create_booking(PAYLOAD, "hold-1", "corr-1")

        request = seen["request"]
        body = json.loads(request.content)
        assert booking.booking_id == "321"
        assert request.headers[IDEMPOTENCY_HEADER] == "hold-1"
        assert body["idempotency_key"] == "hold-1"
        assert body["correlation_id"] == "corr-1"
        assert verify_signature(
            "s3cret", request.headers[TIMESTAMP_HEADER], request.content, request.headers[SIGNATURE_HEADER]
        )

    def test_unsigned_without_secret(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            return httpx.Response(201, json={"id": 5})

        client_for(handler).create_booking(PAYLOAD, "hold-1", "corr-1")

        assert SIGNATURE_HEADER not in seen["headers"]

    def test_client_error_is_rejection_without_booking(self):
        client = client_for(json_response(422, {"message": "Dates not available"}))

        with pytest.raises(ProviderRejected) as exc_info:
            client.create_booking(PAYLOAD, "hold-1", "corr-1")

        assert exc_info.value.message == "Dates not available"
        assert exc_info.value.booking_may_exist is False
        assert exc_info.value.provider_status == 422

    def test_server_error_may_have_created_booking(self):
        client = client_for(lambda request: httpx.Response(502, text="Bad gateway"))

        with pytest.raises(ProviderRejected) as exc_info:
            client.create_booking(PAYLOAD, "hold-1", "corr-1")

        assert exc_info.value.booking_may_exist is True
        assert "HTTP 502" in exc_info.value.message

    def test_success_false(self):
        client = client_for(json_response(200, {"success": False, "error": {"message": "resource closed"}}))

        with pytest.raises(ProviderRejected) as exc_info:
            client.create_booking(PAYLOAD, "hold-1", "corr-1")

        assert exc_info.value.message == "resource closed"
        assert exc_info.value.booking_may_exist is False

    def test_missing_id(self):
        client = client_for(json_response(200, {"success": True}))

        with pytest.raises(ProviderMalformedResponse) as exc_info:
            client.create_booking(PAYLOAD, "hold-1", "corr-1")

        assert exc_info.value.message == "provider did not return an id"
        assert exc_info.value.code == "internal"
        assert exc_info.value.booking_may_exist is True

    def test_connect_error_never_reached_provider(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderUnavailable) as exc_info:
            client_for(handler).create_booking(PAYLOAD, "hold-1", "corr-1")

        assert exc_info.value.code == "unavailable"
        assert exc_info.value.booking_may_exist is False

    def test_read_timeout_outcome_unknown(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProviderTimeout) as exc_info:
            client_for(handler).create_booking(PAYLOAD, "hold-1", "corr-1")

        assert exc_info.value.code == "deadline_exceeded"
        assert exc_info.value.booking_may_exist is True

    def test_connect_timeout_never_reached_provider(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(ProviderTimeout) as exc_info:
            client_for(handler).create_booking(PAYLOAD, "hold-1", "corr-1")

        assert exc_info.value.booking_may_exist is False

    def test_slow_body_hits_overall_deadline(self):
        """Each chunk arrives well inside the read timeout, the whole body does not."""
        def drip():
            for chunk in (b'{"success":true,', b'"booking_id":', b'77}'):
                yield chunk
                time.sleep(0.4)

        client = ProviderClient(
            create_url="https://provider.test/create-booking",
            signing_secret="",
            timeout=0.5,
            transport=httpx.MockTransport(lambda request: httpx.Response(201, content=drip()))
        )
        started = time.monotonic()

        with pytest.raises(ProviderTimeout) as exc_info:
            client.create_booking(PAYLOAD, "hold-1", "corr-1")

        assert exc_info.value.booking_may_exist is True
        assert time.monotonic() - started < 1.5

    def test_oversized_response(self):
        handler = lambda request: httpx.Response(200, content=b" " * (300 * 1024))

        with pytest.raises(ProviderMalformedResponse):
            client_for(handler).create_booking(PAYLOAD, "hold-1", "corr-1")


class TestTimeoutSettings:
    def test_hold_must_outlive_provider_call(self):
        with pytest.raises(ValueError):
            Settings(HOLD_TTL_SECONDS=10, PROVIDER_TIMEOUT_SECONDS=15)

    def test_defaults_are_consistent(self):
        defaults = Settings()

        assert defaults.hold_ttl_seconds > defaults.provider_timeout_seconds


class TestPayload:
    def test_room_payload(self):
        payload = build_provider_payload(
            dates=["2025-06-01", "2025-06-03"], first_name="Ana", last_name="Pop",
            email="ana@example.com", phone="+40721000000", resource_id=101, adults=2, children=1
        )

        assert payload["bookingType"] == "room"
        assert payload["name"] == "Ana"
        assert payload["resource_id"] == 101
        assert "license_plate" not in payload

    def test_camping_payload_carries_plate(self):
        payload = build_provider_payload(
            dates=["2025-06-01", "2025-06-03"], first_name="Ana", last_name="Pop",
            email="ana@example.com", phone="+40721000000", resource_id=7, adults=2, children=0,
            license_plate="B 123 ABC", kind="camping"
        )

        assert payload["bookingType"] == "camping"
        assert payload["license_plate"] == "B 123 ABC"

    def test_sanitized_for_logging(self):
        client = ProviderClient(create_url="https://provider.test", request_id="t")

        clean = client._sanitize_payload({"email": "a@b.ro", "phone": "1", "license_plate": "X", "adults": 2})

        assert clean == {"email": "[REDACTED]", "phone": "[REDACTED]", "license_plate": "[REDACTED]", "adults": 2}

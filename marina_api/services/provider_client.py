"""
Booking Provider Client

Wrapper for the provider's create-booking endpoint (the system of record).
It handles:
- HMAC request signing (timestamp + "." + body) when a secret is configured
- A hard wall-clock deadline for the whole call, body included
- Error mapping to coded booking errors
- Normalizing the provider's booking id from the accepted response shapes

The call can block for the whole timeout, so it must never run inside a
database transaction.
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..config import settings
from ..utils.errors import BookingError, DeadlineExceeded, FailedPrecondition, Internal, Unavailable

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Marina-Signature"
TIMESTAMP_HEADER = "X-Marina-Timestamp"
CORRELATION_HEADER = "X-Marina-Correlation-Id"
IDEMPOTENCY_HEADER = "Idempotency-Key"

# Field names the provider has used for the booking id, in priority order
BOOKING_ID_FIELDS = ("booking_id", "bookingId", "id", "booking", "id_booking")
# Envelopes the id may be nested under
BOOKING_ID_CONTAINERS = ("data", "booking", "result")

MAX_RESPONSE_BYTES = 256 * 1024


class ProviderError(BookingError):
    """
    Failure talking to the provider.

    booking_may_exist is False only when the provider certainly did not
    create anything (request never left, or an explicit rejection).
    """

    booking_may_exist = True

    def __init__(self, message: str, booking_may_exist: Optional[bool] = None, provider_status: Optional[int] = None):
        super().__init__(message)
        if booking_may_exist is not None:
            self.booking_may_exist = booking_may_exist
        self.provider_status = provider_status


class ProviderTimeout(ProviderError, DeadlineExceeded):
    pass


class ProviderUnavailable(ProviderError, Unavailable):
    pass


class ProviderRejected(ProviderError, FailedPrecondition):
    booking_may_exist = False


class ProviderMalformedResponse(ProviderError, Internal):
    pass


@dataclass
class ProviderBooking:
    """Successful provider response"""
    booking_id: str
    status_code: int
    data: Dict = field(default_factory=dict)
    duration_ms: int = 0


def sign_body(secret: str, timestamp: str, body: bytes) -> str:
    """sha256=<hex HMAC-SHA256(secret, timestamp + "." + body)>"""
    message = timestamp.encode("utf-8") + b"." + body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(
    secret: str,
    timestamp: Optional[str],
    body: bytes,
    signature: Optional[str],
    max_age_seconds: int = 300,
    now: Optional[float] = None
) -> bool:
    """Check a signed request (same scheme in both directions)."""
    if not secret or not timestamp or not signature:
        return False
    timestamp = timestamp.strip()
    if not timestamp.isdigit():
        return False
    current = now if now is not None else time.time()
    if abs(current - int(timestamp)) > max_age_seconds:
        return False
    expected = sign_body(secret, timestamp, body)
    return hmac.compare_digest(expected, signature.strip())


def _normalize_id(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return str(value) if value > 0 else None
    if isinstance(value, float) and value.is_integer() and value > 0:
        return str(int(value))
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def extract_booking_id(data: Any) -> Optional[str]:
    """
    Find the booking id in a provider response.

    Accepts a bare id, or an object with one of BOOKING_ID_FIELDS either at
    the top level or inside one of BOOKING_ID_CONTAINERS.
    """
    direct = _normalize_id(data)
    if direct is not None:
        return direct

    if not isinstance(data, dict):
        return None

    for key in BOOKING_ID_FIELDS:
        found = _normalize_id(data.get(key))
        if found is not None:
            return found

    for container in BOOKING_ID_CONTAINERS:
        nested = data.get(container)
        if isinstance(nested, dict):
            for key in BOOKING_ID_FIELDS:
                found = _normalize_id(nested.get(key))
                if found is not None:
                    return found

    return None


class ProviderClient:
    """
    Client for the provider's create-booking call.

    One attempt per call: the hold id is sent as idempotency key, so the
    caller (or the provider's own dedupe) can safely repeat it.
    """

    def __init__(
        self,
        create_url: Optional[str] = None,
        signing_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        request_id: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.create_url = create_url or settings.provider_create_url
        self.signing_secret = settings.provider_signing_secret if signing_secret is None else signing_secret
        self.timeout = timeout or settings.provider_timeout_seconds
        self.request_id = request_id or "no-request-id"
        self.transport = transport

    def _get_headers(self, body: bytes, idempotency_key: str, correlation_id: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "Marina-Backend/1.0",
            IDEMPOTENCY_HEADER: idempotency_key,
            CORRELATION_HEADER: correlation_id,
        }
        if self.signing_secret:
            timestamp = str(int(time.time()))
            headers[TIMESTAMP_HEADER] = timestamp
            headers[SIGNATURE_HEADER] = sign_body(self.signing_secret, timestamp, body)
        return headers

    def _sanitize_payload(self, payload: Optional[Dict]) -> Optional[Dict]:
        """Remove guest contact data before logging"""
        if not payload:
            return None
        sensitive_keys = ["email", "phone", "secret", "token", "license_plate"]
        return {
            k: "[REDACTED]" if any(sk in k.lower() for sk in sensitive_keys) else v
            for k, v in payload.items()
        }

    @staticmethod
    def _error_message(status_code: int, data: Optional[Dict]) -> str:
        if isinstance(data, dict):
            error = data.get("error")
            msg = data.get("message") or (error.get("message") if isinstance(error, dict) else error)
            if msg:
                return str(msg)[:500]
        return f"Provider rejected the booking (HTTP {status_code})"

    def _post(self, body: bytes, headers: Dict[str, str]) -> Tuple[int, bytes]:
        """
        POST and read the whole response before the deadline.

        httpx timeouts only bound each socket operation; the deadline is
        checked as each chunk of the body arrives.
        """
        deadline = time.monotonic() + self.timeout
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            with client.stream("POST", self.create_url, content=body, headers=headers) as response:
                chunks = []
                received = 0
                for chunk in response.iter_bytes():
                    if time.monotonic() > deadline:
                        raise ProviderTimeout(f"Provider response not complete within {self.timeout}s")
                    received += len(chunk)
                    if received > MAX_RESPONSE_BYTES:
                        raise ProviderMalformedResponse(
                            "Provider response too large", provider_status=response.status_code
                        )
                    chunks.append(chunk)
                if time.monotonic() > deadline:
                    raise ProviderTimeout(f"Provider response not complete within {self.timeout}s")
                return response.status_code, b"".join(chunks)

    def create_booking(self, payload: Dict, idempotency_key: str, correlation_id: str) -> ProviderBooking:
        """
        Create a booking at the provider.

        Raises:
            ProviderTimeout: no answer within the timeout
            ProviderUnavailable: transport failure
            ProviderRejected: non-2xx or success: false
            ProviderMalformedResponse: success without a usable booking id
        """
        body_payload = {**payload, "idempotency_key": idempotency_key, "correlation_id": correlation_id}
        body = json.dumps(body_payload, separators=(",", ":"), default=str).encode("utf-8")
        headers = self._get_headers(body, idempotency_key, correlation_id)
        start_time = time.time()

        logger.info(f"[{self.request_id}] POST {self.create_url} payload={self._sanitize_payload(body_payload)}")

        try:
            status_code, content = self._post(body, headers)
        except ProviderTimeout:
            logger.warning(f"[{self.request_id}] Provider response exceeded the {self.timeout}s deadline")
            raise
        except httpx.ConnectTimeout as e:
            raise ProviderTimeout(f"Provider connection timed out: {e}", booking_may_exist=False) from e
        except httpx.TimeoutException as e:
            logger.warning(f"[{self.request_id}] Provider timed out after {self.timeout}s")
            raise ProviderTimeout(f"Provider did not answer within {self.timeout}s") from e
        except httpx.ConnectError as e:
            raise ProviderUnavailable(f"Provider unreachable: {e}", booking_may_exist=False) from e
        except httpx.HTTPError as e:
            logger.warning(f"[{self.request_id}] Provider transport failure: {e}")
            raise ProviderUnavailable(f"Provider transport failure: {e}") from e

        duration_ms = int((time.time() - start_time) * 1000)

        try:
            data = json.loads(content)
        except ValueError:
            data = None

        if not 200 <= status_code < 300:
            message = self._error_message(status_code, data)
            logger.warning(f"[{self.request_id}] Provider rejected ({status_code}) in {duration_ms}ms: {message}")
            raise ProviderRejected(message, booking_may_exist=status_code >= 500, provider_status=status_code)

        if isinstance(data, dict) and data.get("success") is False:
            message = self._error_message(status_code, data)
            logger.warning(f"[{self.request_id}] Provider returned success=false: {message}")
            raise ProviderRejected(message, provider_status=status_code)

        booking_id = extract_booking_id(data)
        if booking_id is None:
            logger.error(f"[{self.request_id}] Provider answered {status_code} without a booking id: {str(data)[:300]}")
            raise ProviderMalformedResponse("provider did not return an id", provider_status=status_code)

        logger.info(f"[{self.request_id}] Provider booking {booking_id} created in {duration_ms}ms")
        return ProviderBooking(
            booking_id=booking_id,
            status_code=status_code,
            data=data if isinstance(data, dict) else {"raw": data},
            duration_ms=duration_ms
        )


def build_provider_payload(
    dates: List[str],
    first_name: str,
    last_name: str,
    email: str,
    phone: str,
    resource_id: int,
    adults: int,
    children: int,
    license_plate: Optional[str] = None,
    kind: str = "room"
) -> Dict:
    """Request body in the provider's field names."""
    payload = {
        "bookingType": kind,
        "dates": dates,
        "name": first_name,
        "last_name": last_name,
        "email": email,
        "phone": phone,
        "resource_id": resource_id,
        "adults": adults,
        "children": children,
        "check_in": settings.check_in_time,
        "check_out": settings.check_out_time,
    }
    if license_plate:
        payload["license_plate"] = license_plate
    return payload

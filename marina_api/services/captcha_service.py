"""
Human verification for anonymous reservation attempts (reCAPTCHA v3).
"""

import logging
from typing import Optional

import httpx

from ..config import settings
from ..utils.errors import Unauthenticated, Unavailable

logger = logging.getLogger(__name__)

EXPECTED_ACTION = "reservation"


class HumanVerifier:
    def __init__(
        self,
        secret: Optional[str] = None,
        verify_url: Optional[str] = None,
        min_score: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.secret = settings.recaptcha_secret if secret is None else secret
        self.verify_url = verify_url or settings.recaptcha_verify_url
        self.min_score = settings.recaptcha_min_score if min_score is None else min_score
        self.timeout = timeout or settings.recaptcha_timeout_seconds
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    def verify(self, token: Optional[str], remote_ip: Optional[str] = None, action: str = EXPECTED_ACTION) -> float:
        """
        Verify a token with the siteverify endpoint and return its score.

        Raises:
            Unauthenticated: token missing, rejected, wrong action or low score
            Unavailable: siteverify could not be reached, or no secret in production
        """
        if not self.enabled:
            if settings.is_production:
                logger.error("RECAPTCHA_SECRET not configured in production, refusing anonymous reservation")
                raise Unavailable("Human verification is not configured")
            logger.warning("RECAPTCHA_SECRET not configured, skipping human verification")
            return 1.0

        if not token:
            raise Unauthenticated("Human verification required", field="captcha_token")

        form = {"secret": self.secret, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.verify_url, data=form)
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"siteverify unreachable: {e}")
            raise Unavailable("Human verification is temporarily unavailable") from e
        except ValueError as e:
            raise Unavailable("Human verification returned an invalid response") from e

        if not data.get("success"):
            logger.info(f"Human verification rejected: {data.get('error-codes')}")
            raise Unauthenticated("Human verification failed", field="captcha_token")

        returned_action = data.get("action")
        if action and returned_action and returned_action != action:
            raise Unauthenticated("Human verification failed", field="captcha_token")

        score = float(data.get("score", 0.0))
        if score < self.min_score:
            logger.info(f"Human verification score too low: {score}")
            raise Unauthenticated("Human verification failed", field="captcha_token")

        return score

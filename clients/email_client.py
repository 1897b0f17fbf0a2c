"""
Email dispatcher for identity notifications.

Posts JSON to an HTTP email gateway. Each request body is signed with
HMAC-SHA256 over its exact serialized bytes and sent in X-Signature, so the
gateway can reject forged or altered requests.
"""

import hashlib
import hmac
import json
import logging
from urllib.parse import urlencode

import requests

logger = logging.getLogger(__name__)

VERIFY_EMAIL_PATH = "/verify-email"
RESET_PASSWORD_PATH = "/reset-password"


class EmailGatewayError(Exception):
    """Gateway unreachable or refused the message."""


class EmailGatewayClient:
    """Sends verification and password reset links through the gateway."""

    def __init__(
        self,
        gateway_url: str,
        api_key: str,
        hmac_secret: str,
        app_url: str,
        timeout: float = 10,
    ):
        """
        Args:
            gateway_url: Full URL of the gateway send endpoint
            api_key: Value for the X-API-Key header
            hmac_secret: Key for the request signature
            app_url: Public base URL the emailed links point at
            timeout: Per-request timeout in seconds

        Raises:
            ValueError: If any credential or the app URL is empty
        """
        for name, value in (
            ("gateway_url", gateway_url),
            ("api_key", api_key),
            ("hmac_secret", hmac_secret),
            ("app_url", app_url),
        ):
            if not value:
                raise ValueError(f"{name} is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.app_url = app_url.rstrip("/")
        self.timeout = timeout

    def sign(self, body: str) -> str:
        return hmac.new(
            self.hmac_secret.encode("utf-8"),
            body.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def build_link(self, path: str, token: str) -> str:
        return f"{self.app_url}{path}?{urlencode({'token': token})}"

    def _post(self, payload: dict) -> None:
        """
        Sign and deliver one message.

        Raises:
            EmailGatewayError: Connection failure, bad response or refusal
        """
        body = json.dumps(payload, separators=(",", ":"))
        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": self.sign(body),
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Email gateway returned invalid JSON (HTTP {response.status_code})")
            raise EmailGatewayError("Invalid response from gateway") from e

        if response.status_code != 200 or not data.get("success"):
            message = data.get("message", "Unknown error")
            logger.error(f"Email gateway refused {payload['type']} message: {message}")
            raise EmailGatewayError(f"Gateway error: {message}")

    def send_verification_email(self, email: str, token: str) -> None:
        """Send the email address confirmation link."""
        self._post({
            "type": "email_verification",
            "email": email,
            "link": self.build_link(VERIFY_EMAIL_PATH, token),
        })
        logger.info("Verification email dispatched")

    def send_password_reset_email(self, email: str, token: str) -> None:
        """Send the password reset link."""
        self._post({
            "type": "password_reset",
            "email": email,
            "link": self.build_link(RESET_PASSWORD_PATH, token),
        })
        logger.info("Password reset email dispatched")

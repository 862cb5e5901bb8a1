"""
SMS Adapter

Implementations of ISMSDeliveryChannel. Adapters report failures through the
returned receipt rather than raising, so the SMS subsystem can roll back the
challenge it created.
"""

import asyncio
import random
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import httpx

from localite_mfa.core.config import SMSConfig
from localite_mfa.core.logging import get_logger
from localite_mfa.mfa.domain.value_objects import SMSDeliveryReceipt

logger = get_logger(__name__)


def render_message(config: SMSConfig, code: str) -> str:
    return config.message_template.format(
        code=code, minutes=config.code_expiry_minutes
    )


class HttpSMSAdapter:
    """SMS delivery through a JSON HTTP gateway.

    The gateway receives ``{"to", "from", "message"}`` and answers with a
    JSON body carrying ``messageId`` (or ``id``).
    """

    def __init__(self, config: SMSConfig, client: httpx.AsyncClient | None = None):
        """Initialize HTTP SMS adapter.

        Args:
            config: SMS configuration with gateway URL and API key
            client: Optional preconfigured HTTP client
        """
        self._config = config
        self._client = client or httpx.AsyncClient(
            timeout=config.delivery_timeout_seconds
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.gateway_api_key:
            headers["Authorization"] = f"Bearer {self._config.gateway_api_key}"
        return headers

    async def send(self, phone: str, code: str) -> SMSDeliveryReceipt:
        payload = {
            "to": phone,
            "from": self._config.sender_id,
            "message": render_message(self._config, code),
        }
        try:
            response = await self._client.post(
                self._config.gateway_url, json=payload, headers=self._headers()
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "SMS gateway rejected message",
                status_code=e.response.status_code,
                phone=phone,
            )
            return SMSDeliveryReceipt(
                success=False, error=f"gateway returned {e.response.status_code}"
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error("SMS gateway request failed", error=str(e), phone=phone)
            return SMSDeliveryReceipt(success=False, error=str(e) or type(e).__name__)

        message_id = body.get("messageId") or body.get("id")
        if not message_id:
            return SMSDeliveryReceipt(success=False, error="gateway returned no message id")

        logger.info("SMS sent successfully", phone=phone, message_id=message_id)
        return SMSDeliveryReceipt(success=True, message_id=str(message_id))

    async def aclose(self) -> None:
        await self._client.aclose()


class SimulatedSMSAdapter:
    """Development channel with artificial latency and random failures."""

    def __init__(self, config: SMSConfig, rng: random.Random | None = None):
        self._delay = config.simulated_delay_seconds
        self._failure_rate = config.simulated_failure_rate
        self._rng = rng or random.Random()

    async def send(self, phone: str, code: str) -> SMSDeliveryReceipt:
        if self._delay:
            await asyncio.sleep(self._delay)

        if self._rng.random() < self._failure_rate:
            logger.warning("Simulated SMS delivery failure", phone=phone)
            return SMSDeliveryReceipt(success=False, error="Simulated SMS delivery failure")

        message_id = f"sim_{int(datetime.now(UTC).timestamp() * 1000)}_{uuid4().hex[:6]}"
        logger.info("Simulated SMS sent", phone=phone, message_id=message_id)
        return SMSDeliveryReceipt(success=True, message_id=message_id)


class MockSMSAdapter:
    """Mock SMS channel for testing. Records every message it is asked to send."""

    def __init__(self):
        """Initialize mock SMS adapter."""
        self._sent_messages: list[dict[str, Any]] = []
        self.should_fail = False
        self.delay_seconds = 0.0

    async def send(self, phone: str, code: str) -> SMSDeliveryReceipt:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if self.should_fail:
            return SMSDeliveryReceipt(success=False, error="Mock delivery failure")

        message_id = f"mock_{uuid4().hex[:12]}"
        self._sent_messages.append(
            {
                "to": phone,
                "code": code,
                "message_id": message_id,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        logger.debug("Mock SMS recorded", message_id=message_id)
        return SMSDeliveryReceipt(success=True, message_id=message_id)

    def get_sent_messages(self) -> list[dict[str, Any]]:
        """Get sent messages log."""
        return self._sent_messages.copy()

    def last_code_for(self, phone: str) -> str | None:
        for message in reversed(self._sent_messages):
            if message["to"] == phone:
                return message["code"]
        return None

    def clear_messages(self) -> None:
        """Clear sent messages log."""
        self._sent_messages.clear()

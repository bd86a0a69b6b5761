"""
WhatsApp gateway clients.
EvolutionGateway talks to an Evolution API instance; SimulatedGateway never leaves the process.
"""

import itertools
import logging
import re
from dataclasses import dataclass

import httpx

from agenda.core import config

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Raised for gateway misconfiguration; send failures are returned as SendResult."""


@dataclass(frozen=True)
class SendResult:
    success: bool
    provider_message_id: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, provider_message_id: str | None) -> "SendResult":
        return cls(True, provider_message_id, None)

    @classmethod
    def failed(cls, error: str) -> "SendResult":
        return cls(False, None, error)


def normalize_phone(phone: str | None, country_code: str = "55") -> str | None:
    """Digits-only international number, or None when it cannot be a valid mobile number."""
    if not phone:
        return None

    digits = re.sub(r"\D", "", phone)
    if digits.startswith("0"):
        digits = digits[1:]
    if not digits.startswith(country_code):
        digits = f"{country_code}{digits}"

    if not 12 <= len(digits) <= 13:
        return None
    return digits


class EvolutionGateway:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        instance: str,
        *,
        country_code: str = "55",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url:
            raise GatewayError("Evolution API base URL is required.")

        self.instance = instance
        self.country_code = country_code
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"apikey": api_key, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def send_text(self, phone: str, message: str) -> SendResult:
        number = normalize_phone(phone, self.country_code)
        if number is None:
            logger.warning("Refusing to send to invalid phone number %r", phone)
            return SendResult.failed(f"Invalid phone number: {phone!r}")

        try:
            response = await self._client.post(
                f"/message/sendText/{self.instance}",
                json={"number": number, "text": message},
            )
        except httpx.HTTPError as exc:
            logger.warning("Evolution API request failed: %s", exc)
            return SendResult.failed(f"{type(exc).__name__}: {exc}")

        if response.status_code not in (200, 201):
            logger.warning("Evolution API returned %s: %s", response.status_code, response.text[:200])
            return SendResult.failed(f"HTTP {response.status_code}: {response.text[:500]}")

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        message_id = (payload.get("key") or {}).get("id") if isinstance(payload, dict) else None
        logger.info("Sent WhatsApp message to %s (id=%s)", number, message_id)
        return SendResult.ok(message_id)

    async def check_connection(self) -> dict:
        """Connection state of the configured instance, e.g. ``{"connected": True, "state": "open"}``."""
        try:
            response = await self._client.get(f"/instance/connectionState/{self.instance}")
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            return {"connected": False, "state": None, "error": str(exc)}

        state = (payload.get("instance") or {}).get("state") or payload.get("state")
        return {"connected": state == "open", "state": state, "error": None}

    async def aclose(self) -> None:
        await self._client.aclose()


class SimulatedGateway:
    """Accepts every valid number and hands out sequential ids."""

    def __init__(self, country_code: str = "55"):
        self.country_code = country_code
        self.sent: list[tuple[str, str]] = []
        self._ids = itertools.count(1)

    async def send_text(self, phone: str, message: str) -> SendResult:
        number = normalize_phone(phone, self.country_code)
        if number is None:
            return SendResult.failed(f"Invalid phone number: {phone!r}")

        self.sent.append((number, message))
        message_id = f"SIM-{next(self._ids):05d}"
        logger.info("Simulated WhatsApp message to %s (id=%s)", number, message_id)
        return SendResult.ok(message_id)

    async def check_connection(self) -> dict:
        return {"connected": True, "state": "simulated", "error": None}

    async def aclose(self) -> None:
        return None


def build_gateway():
    if config.NOTIFICATIONS_SIMULATED:
        return SimulatedGateway(country_code=config.PHONE_COUNTRY_CODE)

    return EvolutionGateway(
        config.EVOLUTION_API_URL,
        config.EVOLUTION_API_KEY,
        config.EVOLUTION_INSTANCE,
        country_code=config.PHONE_COUNTRY_CODE,
        timeout=config.NOTIFICATION_SEND_TIMEOUT_SECONDS,
    )

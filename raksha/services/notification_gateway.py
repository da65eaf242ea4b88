"""SMS notification gateway (Twilio REST API over httpx)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

import httpx

from raksha.core.clock import Clock, utcnow
from raksha.core.errors import NotificationError, NotificationPartialFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    phone: str
    name: str


@dataclass(frozen=True)
class DeliveryResult:
    phone: str
    success: bool
    provider_message_id: str | None = None
    error: str | None = None


@dataclass
class DeliveryReport:
    """Per-contact outcome of one gateway call."""

    results: list[DeliveryResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def delivered(self) -> int:
        return sum(1 for r in self.results if r.success)

    def partial_failure(self) -> NotificationPartialFailure | None:
        failed = [r.phone for r in self.results if not r.success]
        if not failed:
            return None
        return NotificationPartialFailure(failed, self.delivered, self.total)


class NotificationGateway(Protocol):
    async def send(
        self,
        latitude: float,
        longitude: float,
        recipients: list[Recipient],
        sender_name: str,
        critical: bool = False,
    ) -> DeliveryReport: ...

    async def aclose(self) -> None: ...


def maps_link(latitude: float, longitude: float) -> str:
    return f"https://maps.google.com/?q={latitude},{longitude}"


def build_message(sender_name: str, latitude: float, longitude: float, sent_at: datetime, critical: bool) -> str:
    """SMS body for a check-in broadcast or an escalation alert."""
    stamp = sent_at.strftime("%Y-%m-%d %H:%M UTC")
    if critical:
        headline = f"URGENT: {sender_name} has missed their safety check-in and may need help."
    else:
        headline = f"Safety check-in from {sender_name}."
    return f"{headline}\nLocation: {maps_link(latitude, longitude)}\nTime: {stamp}"


class TwilioGateway:
    """Sends one SMS per contact. Never retries a contact within the same call."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_base: str = "https://api.twilio.com",
        timeout_seconds: float = 10.0,
        clock: Clock = utcnow,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._clock = clock
        self._client = httpx.AsyncClient(
            base_url=api_base,
            timeout=timeout_seconds,
            auth=(account_sid, auth_token),
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self._account_sid and self._auth_token and self._from_number)

    async def send(
        self,
        latitude: float,
        longitude: float,
        recipients: list[Recipient],
        sender_name: str,
        critical: bool = False,
    ) -> DeliveryReport:
        if not self.configured:
            raise NotificationError("Twilio credentials are not configured")

        body = build_message(sender_name, latitude, longitude, self._clock(), critical)
        url = f"/2010-04-01/Accounts/{self._account_sid}/Messages.json"
        report = DeliveryReport()
        for recipient in recipients:
            report.results.append(await self._send_one(url, recipient, body))

        if report.total and not report.delivered:
            raise NotificationError(f"No contact reachable ({report.total} attempted)")
        return report

    async def _send_one(self, url: str, recipient: Recipient, body: str) -> DeliveryResult:
        try:
            response = await self._client.post(
                url,
                data={"To": recipient.phone, "From": self._from_number, "Body": body},
            )
        except httpx.HTTPError as exc:
            logger.warning("SMS to %s failed: %s", recipient.phone, exc)
            return DeliveryResult(phone=recipient.phone, success=False, error=str(exc) or exc.__class__.__name__)

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.is_success:
            logger.info("SMS sent to %s: %s", recipient.phone, payload.get("sid"))
            return DeliveryResult(phone=recipient.phone, success=True, provider_message_id=payload.get("sid"))

        error = payload.get("message") or f"HTTP {response.status_code}"
        logger.warning("SMS to %s rejected: %s", recipient.phone, error)
        return DeliveryResult(phone=recipient.phone, success=False, error=error)

    async def aclose(self) -> None:
        await self._client.aclose()

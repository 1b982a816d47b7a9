"""Operator notifications.

Reporters carry human-readable status lines to an operator. ``send_info`` is
for routine events (opportunity found, execution finished), ``send_alert`` for
conditions that need a person, such as an unbalanced position. Delivery
failures are logged and never raised into the trading path.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

import httpx

from gala_arb.config import ReporterSettings

LOGGER = logging.getLogger(__name__)


class StatusReporter(ABC):
    @abstractmethod
    async def send_info(self, text: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def send_alert(self, text: str) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class ConsoleStatusReporter(StatusReporter):
    async def send_info(self, text: str) -> None:
        LOGGER.info("[status] %s", text)

    async def send_alert(self, text: str) -> None:
        LOGGER.warning("[alert] %s", text)


class _WebhookStatusReporter(StatusReporter):
    channel = "webhook"

    def __init__(
        self,
        info_uri: str,
        alert_uri: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._info_uri = info_uri
        self._alert_uri = alert_uri or info_uri
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    def _payload(self, text: str) -> Dict[str, Any]:
        raise NotImplementedError

    async def send_info(self, text: str) -> None:
        await self._post(self._info_uri, text)

    async def send_alert(self, text: str) -> None:
        await self._post(self._alert_uri, text)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, uri: str, text: str) -> None:
        try:
            response = await self._client.post(uri, json=self._payload(text))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.error("%s notification failed: %s (message=%r)", self.channel, exc, text)


class SlackWebhookStatusReporter(_WebhookStatusReporter):
    channel = "slack"

    def _payload(self, text: str) -> Dict[str, Any]:
        return {"text": text}


class DiscordWebhookStatusReporter(_WebhookStatusReporter):
    channel = "discord"

    def _payload(self, text: str) -> Dict[str, Any]:
        # Discord rejects content over 2000 characters.
        return {"content": text[:2000]}


def build_reporter(settings: ReporterSettings) -> StatusReporter:
    if settings.slack_webhook_uri:
        return SlackWebhookStatusReporter(
            settings.slack_webhook_uri,
            settings.slack_alert_webhook_uri,
            timeout_seconds=settings.timeout_seconds,
        )
    if settings.discord_webhook_uri:
        return DiscordWebhookStatusReporter(
            settings.discord_webhook_uri,
            settings.discord_alert_webhook_uri,
            timeout_seconds=settings.timeout_seconds,
        )
    return ConsoleStatusReporter()

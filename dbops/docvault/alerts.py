"""
Webhook alerts for DocVault.

Posts operator-facing messages to Slack ({"text": ...}) and/or Discord
({"content": ...}) incoming webhooks. Both are sent concurrently.

Invariants:
    - notify() never raises on delivery failure; failures are logged
    - No webhook configured means log-only
    - One short-lived HTTP client per notification
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import AlertConfig

logger = logging.getLogger(__name__)

DEFAULT_ICON = "\N{BELL}"


def format_event(
    title: str,
    details: Optional[Dict[str, Any]] = None,
    icon: str = DEFAULT_ICON,
) -> str:
    """Render a title plus pretty-printed JSON details."""
    body = json.dumps(details or {}, indent=2, default=str, ensure_ascii=False)
    return f"{icon} {title}\n```\n{body}\n```"


class Notifier:
    """Best-effort webhook notifier.

    Example:
        >>> notifier = Notifier(AlertConfig.from_env())
        >>> await notifier.notify_event("Backup verified", {"key": "backups/backup-2025-01-01T00-00-00-000Z.zip"})
    """

    def __init__(
        self,
        config: AlertConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._config.slack_webhook_url or self._config.discord_webhook_url)

    def _targets(self, message: str) -> List[Tuple[str, str, Dict[str, str]]]:
        targets = []
        if self._config.slack_webhook_url:
            targets.append(("slack", self._config.slack_webhook_url, {"text": message}))
        if self._config.discord_webhook_url:
            targets.append(("discord", self._config.discord_webhook_url, {"content": message}))
        return targets

    async def _post(
        self,
        client: httpx.AsyncClient,
        provider: str,
        url: str,
        payload: Dict[str, str],
    ) -> bool:
        try:
            response = await client.post(url, json=payload)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(
                "Failed to deliver webhook alert",
                extra={"provider": provider, "error": str(e)},
            )
            return False
        return True

    async def notify(self, message: str) -> int:
        """Deliver message to every configured webhook.

        Returns:
            Number of webhooks that accepted the message
        """
        targets = self._targets(message)
        if not targets:
            logger.info("No alert webhook configured", extra={"alert": message})
            return 0

        async with httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            transport=self._transport,
        ) as client:
            results = await asyncio.gather(
                *(self._post(client, provider, url, payload) for provider, url, payload in targets)
            )
        return sum(1 for ok in results if ok)

    async def notify_event(
        self,
        title: str,
        details: Optional[Dict[str, Any]] = None,
        icon: str = DEFAULT_ICON,
    ) -> int:
        """Log and deliver a titled event with JSON details."""
        logger.info(f"Alert: {title}", extra={"details": details or {}})
        return await self.notify(format_event(title, details, icon=icon))

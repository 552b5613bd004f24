"""
Alert Service
=============

Subscribes to ``payment_abandoned`` events on the event bus and tells
operators about payouts that need manual attention: the buyer was owed
sats, every automatic attempt to pay them failed, and nothing more will
happen until somebody looks at it.

Configuration
-------------

Alerts are controlled via environment variables or entries in the secrets
manager (see ``p2ptrade/secrets_manager.py``):

``ALERT_ENABLE``
    Set to ``true``/``1``/``yes`` to send alerts.  Otherwise the service
    still consumes events and only logs them.

``SLACK_BOT_TOKEN`` / ``SLACK_ALERT_CHANNEL``
    Credentials for Slack notifications.  ``SLACK_CHANNEL_ID`` is accepted
    as an alternative name for the channel.

``TEAMS_WEBHOOK_URL``
    Incoming webhook URL for Microsoft Teams.  Can be used alongside or
    instead of Slack.

When alerts are enabled but neither channel is configured, alerts are
written to the log at warning level.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import requests
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from ..secrets_manager import BaseSecretsManager, get_default_secrets_manager
from .event_bus import PAYMENT_ABANDONED

logger = logging.getLogger(__name__)


def format_alert(message: Dict[str, Any]) -> str:
    return (
        f"Payout abandoned after {message.get('attempts')} attempts: "
        f"order {message.get('order_id')}, user {message.get('user_id')}, "
        f"{message.get('amount')} sats (payment {message.get('payment_id')})"
    )


class AlertService:
    """Send Slack/Teams alerts for payouts that ran out of attempts."""

    def __init__(self, event_bus: Any, secrets: Optional[BaseSecretsManager] = None) -> None:
        self.event_bus = event_bus
        self._secrets = secrets or get_default_secrets_manager()
        get_secret = self._secrets.get_secret

        self.enabled = str(get_secret("ALERT_ENABLE") or "false").lower() in {
            "true",
            "1",
            "yes",
        }
        self.slack_token = get_secret("SLACK_BOT_TOKEN")
        self.slack_channel = get_secret("SLACK_ALERT_CHANNEL") or get_secret("SLACK_CHANNEL_ID")
        self.teams_webhook = get_secret("TEAMS_WEBHOOK_URL")
        self.client: Optional[WebClient] = None
        if self.enabled and self.slack_token:
            self.client = WebClient(token=self.slack_token)
        if self.enabled and not self.slack_token and not self.teams_webhook:
            logger.warning(
                "Alerts enabled but no Slack or Teams credentials provided; falling back to console logging"
            )

    async def _send_slack_message(self, text: str) -> bool:
        """Send a message to Slack if configured; otherwise log."""
        if self.client is None or not self.slack_channel:
            logger.warning("ALERT: %s", text)
            return False
        try:
            await asyncio.to_thread(
                self.client.chat_postMessage, channel=self.slack_channel, text=text
            )
        except SlackApiError as exc:
            logger.error("Failed to send Slack alert: %s", exc)
            logger.warning("ALERT: %s", text)
            return False
        logger.info("Sent Slack alert: %s", text)
        return True

    async def _send_teams_message(self, text: str) -> bool:
        """Send a message to Microsoft Teams via incoming webhook."""
        if not self.teams_webhook:
            return False
        payload = {"text": text}

        def post() -> bool:
            try:
                resp = requests.post(self.teams_webhook, json=payload, timeout=5)
            except requests.RequestException as exc:
                logger.error("Error sending Teams alert: %s", exc)
                return False
            if resp.status_code >= 400:
                logger.error(
                    "Failed to send Teams alert (status %s): %s",
                    resp.status_code,
                    resp.text,
                )
                return False
            return True

        return await asyncio.to_thread(post)

    async def handle(self, message: Any) -> Optional[str]:
        if not isinstance(message, dict):
            return None
        text = format_alert(message)
        if not self.enabled:
            logger.info("Payout abandoned (alerts disabled): %s", text)
            return text
        await self._send_slack_message(text)
        await self._send_teams_message(text)
        return text

    async def run(self) -> None:
        """Main loop: listen for abandoned payouts and alert on each."""
        if self.event_bus is None:
            logger.error("AlertService requires an event bus")
            return
        logger.info(
            "AlertService started; enabled=%s, slack_channel=%s, teams=%s",
            self.enabled,
            self.slack_channel,
            bool(self.teams_webhook),
        )
        async for message in self.event_bus.subscribe(PAYMENT_ABANDONED):
            await self.handle(message)

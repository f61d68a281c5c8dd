"""
Alert notification channels.

This module contains the channel adapters alerts are delivered through:
email over an HTTP email API, a Slack-compatible chat webhook, and a
generic JSON webhook.

Components:
    base: AlertChannel protocol and the shared aiohttp sender
    email: Email channel
    chat: Chat webhook channel
    webhook: Generic webhook channel

Example:
    >>> from usage_alerts.detection.channels import create_channels
    >>>
    >>> channels = create_channels(config.notifications.channels, directory)
    >>> await channels["email"].send(alert)
"""

from typing import Dict, Optional

from usage_alerts.config.models import ChannelsConfig
from usage_alerts.detection.channels.base import (
    DISABLED,
    NOT_CONFIGURED,
    AlertChannel,
    HttpChannel,
)
from usage_alerts.detection.channels.chat import SEVERITY_COLORS, ChatWebhookChannel
from usage_alerts.detection.channels.email import EmailChannel
from usage_alerts.detection.channels.webhook import GenericWebhookChannel
from usage_alerts.storage.base import OrganizationDirectory


def create_channels(
    config: ChannelsConfig,
    directory: Optional[OrganizationDirectory] = None,
) -> Dict[str, AlertChannel]:
    """
    Build every channel adapter from configuration.

    Args:
        config: Channel settings.
        directory: Used by the generic webhook to find organization URLs.

    Returns:
        Dict[str, AlertChannel]: Channels keyed by their policy name.
    """
    return {
        EmailChannel.name: EmailChannel(
            config.email,
            app_url=config.app_url,
            timeout_seconds=config.timeout_seconds,
        ),
        ChatWebhookChannel.name: ChatWebhookChannel(
            config.chat_webhook,
            app_url=config.app_url,
            timeout_seconds=config.timeout_seconds,
        ),
        GenericWebhookChannel.name: GenericWebhookChannel(
            config.generic_webhook,
            directory=directory,
            timeout_seconds=config.timeout_seconds,
        ),
    }


__all__ = [
    # Base
    "AlertChannel",
    "HttpChannel",
    "NOT_CONFIGURED",
    "DISABLED",
    # Channels
    "EmailChannel",
    "ChatWebhookChannel",
    "GenericWebhookChannel",
    "SEVERITY_COLORS",
    # Factory
    "create_channels",
]

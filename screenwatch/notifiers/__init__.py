"""Notifiers and lock actions triggered by the engine."""

from screenwatch.notifiers.command import CommandLocker
from screenwatch.notifiers.webhook import WebhookConfig, WebhookNotifier

__all__ = ["CommandLocker", "WebhookConfig", "WebhookNotifier"]

"""Notification adapters."""

from teamauth.adapters.notifications.console import ConsoleNotifier

__all__ = ["ConsoleNotifier"]

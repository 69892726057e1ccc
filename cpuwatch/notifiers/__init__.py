"""Notification delivery backends."""

from .telegram import TelegramNotifier, format_message

__all__ = ["TelegramNotifier", "format_message"]

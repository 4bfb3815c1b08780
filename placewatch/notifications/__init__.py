"""
Placewatch Notifications
========================

Telegram delivery and message rendering.
"""

from .telegram_notifier import NotifyFailedError, TelegramNotifier, select_notifiable

__all__ = ["NotifyFailedError", "TelegramNotifier", "select_notifiable"]

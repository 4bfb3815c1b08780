"""
Telegram Notifier for Placewatch
================================

Sends chat messages through the Telegram Bot API ``sendMessage`` method.

Delivery is best-effort: ``send`` never raises. Transport failures are
raised internally as NotifyFailedError, logged, and reported to the caller
as ``False`` so a failed notification can never abort or roll back the
ingestion it reports on.

Configuration:
    TELEGRAM_BOT_TOKEN: Bot token (from .env)
    ENABLE_NOTIFICATIONS: "false" to disable sending (from .env)
"""

import logging
from typing import List, Optional, Sequence

import requests

from ..data.review_models import NotificationSettings, Review, Target
from . import messages

logger = logging.getLogger(__name__)

TELEGRAM_MAX_LENGTH = 4096


class NotifyFailedError(Exception):
    """Telegram transport error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def select_notifiable(reviews: Sequence[Review], settings: Optional[NotificationSettings]) -> List[Review]:
    """
    Reviews that pass the notification settings.

    No settings means notify unconditionally; inactive settings mean
    notify nothing; otherwise only ratings in ``notify_on_rating`` pass.
    """
    if settings is None:
        return list(reviews)
    if not settings.is_active:
        return []
    return [r for r in reviews if settings.allows(r.rating)]


class TelegramNotifier:
    """
    Sends Telegram messages for sync events.

    Uses the Bot API over HTTPS; stateless apart from send counters.
    """

    API_BASE = "https://api.telegram.org"

    def __init__(
        self,
        bot_token: str,
        enabled: bool = True,
        timeout: int = 10,
    ):
        """
        Initialize Telegram notifier.

        Args:
            bot_token: Telegram bot token
            enabled: Enable notifications
            timeout: HTTP timeout in seconds
        """
        self.bot_token = bot_token
        self.enabled = enabled
        self.timeout = timeout
        self._sent = 0
        self._failed = 0

        if self.enabled and not self.bot_token:
            logger.warning("Telegram notifications enabled but TELEGRAM_BOT_TOKEN not set")
            self.enabled = False

    @classmethod
    def from_config(cls, config) -> "TelegramNotifier":
        """Build from a TelegramConfig."""
        return cls(
            bot_token=config.bot_token,
            enabled=config.enabled,
            timeout=config.request_timeout,
        )

    def is_configured(self) -> bool:
        """Check if notifier is properly configured."""
        return bool(self.enabled and self.bot_token)

    def send(self, chat_id: Optional[str], text: str, parse_mode: str = "HTML") -> bool:
        """
        Send one message.

        Args:
            chat_id: Destination chat
            text: Rendered message body
            parse_mode: Telegram parse mode

        Returns:
            True if Telegram accepted the message
        """
        if not self.is_configured():
            logger.debug("Telegram notifications disabled or not configured")
            return False

        if not chat_id:
            logger.warning("No Telegram chat id for message, skipping")
            return False

        try:
            self._post(chat_id, text, parse_mode)
        except NotifyFailedError as e:
            self._failed += 1
            logger.error(f"Failed to send Telegram notification to {chat_id}: {e}")
            return False

        self._sent += 1
        logger.info(f"Telegram notification sent to {chat_id}")
        return True

    def _post(self, chat_id: str, text: str, parse_mode: str):
        if parse_mode == "HTML":
            text = messages.truncate_html(text, TELEGRAM_MAX_LENGTH)
        elif len(text) > TELEGRAM_MAX_LENGTH:
            text = text[:TELEGRAM_MAX_LENGTH - 3] + "..."

        url = f"{self.API_BASE}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": True,
        }

        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            # requests puts the URL (and so the token) in some messages
            raise NotifyFailedError(str(e).replace(self.bot_token, "***"))

        if response.status_code != 200:
            raise NotifyFailedError(
                f"Telegram API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

    def notify_new_reviews(
        self,
        target: Target,
        reviews: Sequence[Review],
        settings: Optional[NotificationSettings] = None,
    ) -> bool:
        """
        Notify about reviews that were just inserted.

        A single matching review gets the detailed alert format; larger
        batches get one listing message capped at 10 entries.
        """
        notifiable = select_notifiable(reviews, settings)
        if not notifiable:
            logger.debug(f"{target.id}: no inserted review passes the notification settings")
            return False

        if len(notifiable) == 1:
            text = messages.render_review_alert(notifiable[0], target.display_name)
        else:
            text = messages.render_new_reviews(target, notifiable)
        return self.send(self.destination_for(target, settings), text)

    def destination_for(self, target: Target, settings: Optional[NotificationSettings] = None) -> Optional[str]:
        """Target chat, falling back to the settings chat."""
        if target.chat_id:
            return target.chat_id
        return settings.chat_id if settings is not None else None

    def get_stats(self):
        return {"sent": self._sent, "failed": self._failed}

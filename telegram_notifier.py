#!/usr/bin/env python3
"""
Telegram Notifier
Sends alert text through the Telegram Bot API.
A single attempt per call; the alert dispatcher owns retries.
"""

import requests
import logging

logger = logging.getLogger('resmon.telegram')


def mask_secret(secret):
    """'123456789:ABCdef...' -> '12345...vwxyz' (never log full tokens)"""
    if not secret:
        return '<unset>'
    if len(secret) <= 10:
        return '*' * len(secret)
    return f"{secret[:5]}...{secret[-5:]}"


class TelegramNotifier:
    """
    HTTP client for the Telegram sendMessage method.

    Features:
    - Connection pooling (reuses TCP connections)
    - Timeout handling
    - Error classification (client vs transient errors)
    - Bot token masked in every log line
    """

    enabled = True

    def __init__(self, bot_token, chat_id, api_url='https://api.telegram.org', timeout=10):
        """
        Args:
            bot_token: Telegram bot token
            chat_id: Target chat identifier
            api_url: Bot API base URL
            timeout: Request timeout (seconds)
        """
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'ResourceMonitor/1.0'
        })

        logger.info(f"[Telegram] Initialized (chat_id={chat_id}, token={self.token_hint()})")

    def token_hint(self):
        return mask_secret(self.bot_token)

    def _mask(self, text):
        """Remove the token from exception text (request URLs embed it)"""
        return str(text).replace(self.bot_token, self.token_hint())

    def send_message(self, text):
        """
        Send one message.

        Returns:
            tuple: (success: bool, error_type: str or None)
        """
        endpoint = f"{self.api_url}/bot{self.bot_token}/sendMessage"
        payload = {'chat_id': self.chat_id, 'text': text}

        try:
            response = self.session.post(endpoint, json=payload, timeout=self.timeout)

            if response.status_code == 200:
                try:
                    body = response.json()
                except ValueError:
                    body = {}
                if body.get('ok', False):
                    logger.debug("[Telegram] Message delivered")
                    return True, None
                logger.warning(f"[Telegram] API returned not ok: {body.get('description', 'no description')}")
                return False, 'api_error'

            elif 400 <= response.status_code < 500:
                error_msg = f"Client error: {response.status_code}"
                try:
                    error_msg = f"{error_msg} - {response.json().get('description', 'Unknown')}"
                except ValueError:
                    error_msg = f"{error_msg} - {self._mask(response.text[:100])}"

                logger.error(f"[Telegram] {error_msg}")
                return False, 'client_error'

            else:
                logger.warning(f"[Telegram] Server error: {response.status_code}")
                return False, 'server_error'

        except requests.exceptions.ConnectionError:
            logger.warning("[Telegram] Connection error (api unreachable)")
            return False, 'connection_error'

        except requests.exceptions.Timeout:
            logger.warning(f"[Telegram] Request timeout ({self.timeout}s)")
            return False, 'timeout'

        except requests.exceptions.RequestException as e:
            logger.error(f"[Telegram] Request exception: {self._mask(e)}")
            return False, 'request_error'

    def close(self):
        """Close HTTP session"""
        try:
            self.session.close()
            logger.debug("[Telegram] Session closed")
        except Exception as e:
            logger.error(f"[Telegram] Error closing session: {e}")


class NullNotifier:
    """Stand-in used when Telegram credentials are not configured"""

    enabled = False
    chat_id = None

    def token_hint(self):
        return mask_secret(None)

    def send_message(self, text):
        logger.debug("[Telegram] Notifications disabled, message not sent")
        return False, 'disabled'

    def close(self):
        pass


def create_notifier(settings):
    """Build the notification transport, or a NullNotifier if credentials are missing"""
    telegram = settings.telegram
    bot_token = telegram.get('bot_token')
    chat_id = telegram.get('chat_id')

    if not bot_token or not chat_id:
        logger.error("[Telegram] Disabled (bot token or chat id not configured)")
        return NullNotifier()

    return TelegramNotifier(
        bot_token=bot_token,
        chat_id=chat_id,
        api_url=telegram.get('api_url') or 'https://api.telegram.org',
        timeout=telegram.get('timeout', 10),
    )

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


def send_telegram_message(client: httpx.Client, *, bot_token: str, chat_id: str, text: str) -> None:
    """Post one message through `client`. Raises on HTTP errors and on {"ok": false}."""
    response = client.post(
        f"/bot{bot_token}/sendMessage",
        json={"chat_id": chat_id, "text": text, "disable_web_page_preview": True},
    )
    try:
        data = response.json()
    except ValueError:
        response.raise_for_status()
        raise RuntimeError(f"Telegram API returned HTTP {response.status_code} without a JSON body") from None

    if not isinstance(data, dict):
        raise RuntimeError(f"Telegram API returned HTTP {response.status_code} with an unexpected body")
    # Telegram explains failures in "description", also on 4xx answers.
    if not response.is_success or not data.get("ok", False):
        raise RuntimeError(f"Telegram API error (HTTP {response.status_code}): {data.get('description', data)}")


class Notifier:
    """Telegram broadcast to every configured chat. Disabled without a bot token.

    Each broadcast shares one connection across its recipients.
    """

    def __init__(
        self,
        bot_token: str | None,
        chat_ids: tuple[str, ...] = (),
        *,
        timeout_seconds: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._chat_ids = chat_ids
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._bot_token and self._chat_ids)

    def notify(self, text: str) -> None:
        if not self.enabled:
            return

        failed: list[str] = []
        client = httpx.Client(base_url=TELEGRAM_API_URL, timeout=self._timeout_seconds, transport=self._transport)
        with client:
            for chat_id in self._chat_ids:
                try:
                    send_telegram_message(client, bot_token=self._bot_token, chat_id=chat_id, text=text)
                except Exception as e:
                    # Keep going: one blocked chat must not silence the others.
                    logger.warning(
                        "Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e
                    )
                    failed.append(chat_id)

        if failed:
            raise RuntimeError(f"Failed to send telegram message to some recipients: {', '.join(failed)}")

    def notify_best_effort(self, text: str) -> None:
        try:
            self.notify(text)
        except Exception:
            logger.warning("Telegram notification failed", exc_info=True)

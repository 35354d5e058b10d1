# src/hn_digest/publishers/telegram.py

from __future__ import annotations

import asyncio
import html
import logging

import httpx

from ..core.ports import DigestEntry, PublishContent

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
NUMBER_EMOJIS = ["1️⃣", "2️⃣", "3️⃣", "4️⃣", "5️⃣", "6️⃣", "7️⃣", "8️⃣", "9️⃣", "🔟"]


class TelegramPublishError(RuntimeError):
    pass


def escape_html(text: str) -> str:
    return html.escape(text or "", quote=False)


def rank_marker(rank: int) -> str:
    if 1 <= rank <= len(NUMBER_EMOJIS):
        return NUMBER_EMOJIS[rank - 1]
    return f"{rank}."


def format_story_message(entry: DigestEntry) -> str:
    text = f"{rank_marker(entry.rank)} <b>{escape_html(entry.title_zh or entry.title_en)}</b>\n\n"
    text += f'🔗 <a href="{html.escape(entry.url, quote=True)}">原文链接</a>\n\n'
    text += f"📝 {escape_html(entry.description)}"
    if entry.comment_summary:
        text += f"\n\n💬 <b>评论要点</b>: {escape_html(entry.comment_summary)}"
    return text


def format_messages(entries: list[DigestEntry], date_str: str) -> list[str]:
    """[header, story 1, ..., story N, footer]; a single notice when there are no entries."""
    if not entries:
        return [f"📰 <b>HackerNews 日报</b> | {date_str}\n\n今日暂无更新内容。"]

    n = len(entries)
    messages = [f"📰 <b>HackerNews 日报</b> | {date_str}\n\n今日精选 {n} 篇文章，逐条推送中..."]
    messages.extend(format_story_message(e) for e in sorted(entries, key=lambda e: e.rank))
    messages.append(
        "━━━━━━━━━━━━━━━━━━━━\n\n"
        f"📰 <b>HackerNews 日报</b> | {date_str}\n\n"
        f"✅ 今日 {n} 篇文章已全部推送完毕"
    )
    return messages


class TelegramPublisher:
    """
    Broadcasts the digest to a channel, one HTML message per story.

    Individual send failures are logged and skipped; publish raises only when
    no message at all got through.
    """

    name = "telegram"

    def __init__(
            self,
            bot_token: str | None,
            channel_id: str | None,
            *,
            http: httpx.AsyncClient | None = None,
            api_url: str = TELEGRAM_API_URL,
            message_delay_seconds: float = 0.5,
            timeout_seconds: float = 30.0,
    ) -> None:
        self.bot_token = bot_token
        self.channel_id = channel_id
        self._own_http = http is None
        self.http = http or httpx.AsyncClient(timeout=timeout_seconds)
        self.api_url = api_url.rstrip("/")
        self.message_delay_seconds = max(0.0, float(message_delay_seconds))

    async def aclose(self) -> None:
        if self._own_http:
            await self.http.aclose()

    async def send_message(self, text: str) -> None:
        resp = await self.http.post(
            f"{self.api_url}/bot{self.bot_token}/sendMessage",
            json={
                "chat_id": self.channel_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": False,
            },
        )
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = {}
        if resp.status_code >= 400 or not data.get("ok"):
            raise TelegramPublishError(
                f"Telegram API error: {data.get('description') or resp.status_code} (code: {data.get('error_code')})"
            )

    async def publish(self, content: PublishContent) -> None:
        if not self.bot_token:
            raise TelegramPublishError("Telegram bot token is required (DIGEST_TELEGRAM_BOT_TOKEN)")
        if not self.channel_id:
            raise TelegramPublishError("Telegram channel id is required (DIGEST_TELEGRAM_CHANNEL_ID)")

        messages = format_messages(content.entries, content.date_str)
        logger.info("Telegram: sending %d messages date=%s", len(messages), content.date_str)

        sent = 0
        for i, message in enumerate(messages, start=1):
            try:
                await self.send_message(message)
                sent += 1
            except (httpx.HTTPError, TelegramPublishError):
                logger.exception("Telegram: failed to send message %d/%d", i, len(messages))
            if i < len(messages) and self.message_delay_seconds:
                await asyncio.sleep(self.message_delay_seconds)

        logger.info("Telegram: sent %d/%d messages", sent, len(messages))
        if sent == 0:
            raise TelegramPublishError(f"Telegram: all {len(messages)} messages failed")

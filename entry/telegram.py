"""
Telegram Reply Bridge.

Responsibility:
- Mirror conversation traffic to an operator chat, tagged with the conversation id
- Poll Telegram updates (long polling) for operator replies
- Parse `/reply <cid> <text>` commands back into conversation messages
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable

import httpx
from pydantic import BaseModel

from shared.config import Settings

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000
BRIDGE_AUTHOR = "bridge:telegram"

_REPLY_PATTERN = re.compile(r"^\s*/reply(?:@\w+)?\s+(\S+)\s+([\s\S]+)$", re.IGNORECASE)
_CID_PREFIX = re.compile(r"^cid:", re.IGNORECASE)


class InboundReply(BaseModel):
    """Operator reply parsed from the bridge chat."""
    model_config = {"frozen": True}

    conversation_id: str
    text: str
    author: str = BRIDGE_AUTHOR


ReplyHandler = Callable[[InboundReply], Awaitable[None] | None]


def normalize_conversation_id(raw: str) -> str:
    """Drop a pasted `cid:` correlation prefix."""
    return _CID_PREFIX.sub("", (raw or "").strip())


def parse_inbound(raw_text: str) -> InboundReply | None:
    """`/reply[@bot] <cid> <text>` -> InboundReply; anything else -> None."""
    match = _REPLY_PATTERN.match(raw_text or "")
    if not match:
        return None
    conversation_id = normalize_conversation_id(match.group(1))
    text = match.group(2).strip()
    if not conversation_id or not text:
        return None
    return InboundReply(conversation_id=conversation_id, text=text)


def format_mirror(conversation_id: str, author: str, text: str) -> str:
    return f"cid:{conversation_id} [{author}] {text}"[:MAX_MESSAGE_LENGTH]


class TelegramReplyBridge:
    """Operator channel on Telegram (long polling)."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        poll_timeout_seconds: int = 20,
        request_timeout_seconds: float = 35.0,
        api_base: str = "https://api.telegram.org",
    ):
        if not bot_token.strip():
            raise ValueError("Telegram bot token is required.")

        self._api_base = f"{api_base.rstrip('/')}/bot{bot_token.strip()}"
        self.chat_id = str(chat_id).strip()
        self.poll_timeout_seconds = max(1, int(poll_timeout_seconds))
        self.request_timeout_seconds = float(request_timeout_seconds)
        self._client = httpx.AsyncClient(timeout=self.request_timeout_seconds)
        self._poller: asyncio.Task | None = None
        self._offset: int | None = None
        self.connected = False
        self.username: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "TelegramReplyBridge | None":
        if not settings.bridge_configured:
            logger.info("Telegram bridge not configured; operator mirroring disabled")
            return None
        return cls(
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_bridge_chat_id,
            poll_timeout_seconds=settings.telegram_poll_timeout_seconds,
            request_timeout_seconds=settings.telegram_request_timeout_seconds,
        )

    async def send_message(self, text: str) -> None:
        """Send text to the operator chat. Raises on transport or API errors."""
        response = await self._client.post(
            f"{self._api_base}/sendMessage",
            json={"chat_id": self.chat_id, "text": (text or "(empty)")[:MAX_MESSAGE_LENGTH]},
        )
        response.raise_for_status()
        payload = response.json()
        if not payload.get("ok", False):
            raise RuntimeError(f"telegram_rejected: {payload.get('description', payload)}")

    async def mirror_out(self, conversation_id: str, author: str, text: str) -> None:
        """Copy one conversation message to the operator chat."""
        await self.send_message(format_mirror(conversation_id, author, text))

    async def identify(self) -> None:
        """Resolve the bot username via getMe."""
        try:
            response = await self._client.get(f"{self._api_base}/getMe")
            response.raise_for_status()
            result = response.json().get("result") or {}
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Telegram getMe failed: %s", e)
            return
        self.username = result.get("username")

    def _replies_from(self, updates: list[dict[str, Any]]) -> list[InboundReply]:
        replies: list[InboundReply] = []
        max_update_id: int | None = None
        for update in updates:
            update_id = update.get("update_id")
            if isinstance(update_id, int):
                max_update_id = update_id if max_update_id is None else max(max_update_id, update_id)

            message = update.get("message") or {}
            if (message.get("from") or {}).get("is_bot"):
                continue
            chat_id = str((message.get("chat") or {}).get("id", "")).strip()
            if chat_id != self.chat_id:
                continue
            reply = parse_inbound(str(message.get("text", "")))
            if reply is not None:
                replies.append(reply)

        if max_update_id is not None:
            self._offset = max_update_id + 1
        return replies

    async def poll_once(self) -> list[InboundReply]:
        """One getUpdates round. Polling errors are logged and yield no replies."""
        params: dict[str, Any] = {
            "timeout": self.poll_timeout_seconds,
            "allowed_updates": '["message"]',
        }
        if self._offset is not None:
            params["offset"] = self._offset

        try:
            response = await self._client.get(f"{self._api_base}/getUpdates", params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Telegram polling error: %s", e)
            self.connected = False
            return []

        if not payload.get("ok", False):
            logger.warning("Telegram getUpdates returned non-ok payload: %s", payload)
            self.connected = False
            return []

        self.connected = True
        return self._replies_from(payload.get("result", []))

    async def run(self, on_reply: ReplyHandler, retry_delay_seconds: float = 5.0) -> None:
        """Poll until cancelled, handing each parsed reply to on_reply."""
        await self.identify()
        while True:
            try:
                replies = await self.poll_once()
            except Exception:
                logger.exception("Telegram poll iteration failed")
                self.connected = False
                replies = []
            if not self.connected:
                await asyncio.sleep(retry_delay_seconds)
                continue
            for reply in replies:
                logger.info("Operator reply for conversation %s", reply.conversation_id)
                try:
                    result = on_reply(reply)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    logger.exception("Operator reply handler failed for %s", reply.conversation_id)

    def start(self, on_reply: ReplyHandler) -> None:
        if self._poller is None or self._poller.done():
            self._poller = asyncio.get_running_loop().create_task(self.run(on_reply))

    async def stop(self) -> None:
        if self._poller is not None:
            self._poller.cancel()
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
            self._poller = None
        self.connected = False
        await self._client.aclose()

    def status(self) -> dict[str, Any]:
        return {
            "configured": True,
            "connected": self.connected,
            "chatId": self.chat_id,
            "username": self.username,
        }

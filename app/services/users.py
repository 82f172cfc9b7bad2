from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import orjson

logger = logging.getLogger(__name__)


class UserRegistry:
    """Chats seen by the bot plus their optional coin subscription.

    Kept in memory; when ``path`` is set a JSON snapshot is written after each
    change and loaded on start. There is no durability beyond that.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = Path(path) if path else None
        self._active: set[int] = set()
        self._subscriptions: dict[int, str] = {}
        self._load()

    def _load(self) -> None:
        if not self.path or not self.path.exists():
            return
        try:
            payload = orjson.loads(self.path.read_bytes())
            self._active = {int(x) for x in payload.get("active", [])}
            self._subscriptions = {int(k): str(v) for k, v in (payload.get("subscriptions") or {}).items()}
        except (OSError, orjson.JSONDecodeError, TypeError, ValueError) as exc:
            logger.warning("users_file_load_failed", extra={"event": "users_file_load_failed", "error": str(exc)})

    def _dump(self) -> None:
        assert self.path is not None
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "active": sorted(self._active),
            "subscriptions": {str(k): v for k, v in self._subscriptions.items()},
        }
        self.path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))

    async def _save(self) -> None:
        if not self.path:
            return
        try:
            await asyncio.to_thread(self._dump)
        except OSError as exc:
            logger.warning("users_file_save_failed", extra={"event": "users_file_save_failed", "error": str(exc)})

    async def touch(self, chat_id: int) -> bool:
        """Mark a chat active; True when it was not seen before."""
        if chat_id in self._active:
            return False
        self._active.add(chat_id)
        await self._save()
        return True

    async def subscribe(self, chat_id: int, ticker: str) -> None:
        self._active.add(chat_id)
        self._subscriptions[chat_id] = ticker.lower()
        await self._save()

    async def unsubscribe(self, chat_id: int) -> bool:
        removed = self._subscriptions.pop(chat_id, None) is not None
        if removed:
            await self._save()
        return removed

    def subscription_for(self, chat_id: int) -> str | None:
        return self._subscriptions.get(chat_id)

    def active_users(self) -> list[int]:
        return sorted(self._active)

    def subscribers(self) -> dict[str, list[int]]:
        out: dict[str, list[int]] = {}
        for chat_id, ticker in sorted(self._subscriptions.items()):
            out.setdefault(ticker, []).append(chat_id)
        return out

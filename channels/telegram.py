"""Telegram session via Bot API (long polling).

Inbound: getUpdates long polling (httpx async).
Outbound: Bot API HTTP calls (httpx async).
Group chats are Rooms named by their title; private chats are Contacts.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path

import httpx

from . import Contact, FileBox, Message, MessageType, Room, Sayable, SessionEvent

log = logging.getLogger(__name__)

# Reconnect policy: 1s initial -> 10s max, factor 2, 20% jitter
_RECONNECT_INITIAL = 1.0
_RECONNECT_MAX = 10.0
_RECONNECT_FACTOR = 2.0
_RECONNECT_JITTER = 0.2

# Telegram Bot API base URL
_API_BASE = "https://api.telegram.org/bot{token}"

_GROUP_CHAT_TYPES = ("group", "supergroup")


class TelegramSession:
    def __init__(
        self,
        token: str,
        allow_from: list[int] | None = None,
        chunk_limit: int = 4000,
        contacts: dict[str, int] | None = None,
        rooms: dict[str, int] | None = None,
        owner: str = "",
    ):
        self.token = token
        self.base_url = _API_BASE.format(token=token)
        self.allow_from = set(allow_from) if allow_from else set()
        self.chunk_limit = chunk_limit
        self.owner = owner

        # Exact name -> chat_id for outbound resolution
        self._contacts: dict[str, int] = dict(contacts or {})
        self._rooms: dict[str, int] = dict(rooms or {})
        # Reverse: user_id -> name for inbound sender resolution
        self._id_to_name: dict[int, str] = {v: k for k, v in self._contacts.items()}

        self._bot_id: int = 0
        self._bot_name: str = ""
        self._offset: int = 0  # getUpdates offset
        self._running = False
        self.current_user: Contact | None = Contact(owner, session=self) if owner else None

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))
        return self._client

    async def _api(self, method: str, **params) -> dict:
        """Call Telegram Bot API method."""
        client = await self._get_client()
        url = f"{self.base_url}/{method}"

        # Separate files from regular params
        files = params.pop("_files", None)

        if files:
            resp = await client.post(url, data=params, files=files)
        else:
            resp = await client.post(url, json=params)

        # Telegram returns error descriptions even on 4xx, so parse before raise_for_status().
        try:
            data = resp.json()
        except (ValueError, KeyError) as exc:
            resp.raise_for_status()
            raise RuntimeError(f"Telegram API error ({method}): non-JSON response {resp.status_code}") from exc

        if not data.get("ok"):
            desc = data.get("description", f"HTTP {resp.status_code}")
            raise RuntimeError(f"Telegram API error ({method}): {desc}")

        return data.get("result", {})

    async def connect(self) -> None:
        """Verify bot token and log identity."""
        try:
            me = await self._api("getMe")
        except Exception as e:
            log.error("Cannot connect to Telegram Bot API: %s", e)
            raise ConnectionError(f"Telegram Bot API unreachable: {e}") from e
        self._bot_id = me.get("id", 0)
        self._bot_name = me.get("username") or me.get("first_name", "")
        if self.current_user is None:
            self.current_user = Contact(self._bot_name, id=str(self._bot_id), session=self)
        log.info("Telegram bot connected: @%s (id=%d)", self._bot_name, self._bot_id)

    async def start(self) -> None:
        await self.connect()
        self._running = True

    async def stop(self) -> None:
        self._running = False
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def events(self) -> AsyncIterator[SessionEvent]:
        """Long-polling loop. Auto-reconnects on failure."""
        yield SessionEvent("start")
        yield SessionEvent("login", self.current_user)
        yield SessionEvent("ready")
        backoff = _RECONNECT_INITIAL
        while self._running:
            try:
                async for msg in self._poll_loop():
                    yield SessionEvent("message", msg)
                    backoff = _RECONNECT_INITIAL
            except asyncio.CancelledError:
                break
            except Exception as e:
                yield SessionEvent("error", e)
                jitter = backoff * _RECONNECT_JITTER * (random.random() * 2 - 1)  # noqa: S311
                wait = backoff + jitter
                log.warning("Telegram poll disconnected (%s), reconnecting in %.1fs", e, wait)
                await asyncio.sleep(wait)
                backoff = min(backoff * _RECONNECT_FACTOR, _RECONNECT_MAX)
        yield SessionEvent("stop")

    async def _poll_loop(self) -> AsyncIterator[Message]:
        """Single polling session: yields messages until error."""
        while self._running:
            updates = await self._api(
                "getUpdates",
                offset=self._offset,
                timeout=30,
                allowed_updates=["message"],
            )

            for update in updates:
                update_id = update.get("update_id", 0)
                if update_id >= self._offset:
                    self._offset = update_id + 1

                message = update.get("message")
                if not message:
                    continue

                parsed = await self._parse_message(message)
                if parsed is not None:
                    yield parsed

    async def _parse_message(self, message: dict) -> Message | None:
        """Parse a Telegram message dict into a Message, or None to skip."""
        from_user = message.get("from", {})
        user_id = from_user.get("id", 0)
        chat = message.get("chat", {})
        chat_id = chat.get("id", 0)

        # Skip messages from the bot itself
        if user_id == self._bot_id:
            return None

        # Filter by allow list
        if self.allow_from and user_id not in self.allow_from:
            log.debug("Ignoring message from non-allowed user: %d", user_id)
            return None

        # Resolve sender name
        name = self._id_to_name.get(user_id, "")
        if not name:
            name = from_user.get("username") or from_user.get("first_name") or str(user_id)
            self._id_to_name[user_id] = name
        talker = Contact(name, id=str(user_id), session=self)

        room = None
        listener = None
        if chat.get("type") in _GROUP_CHAT_TYPES:
            topic = chat.get("title", "") or str(chat_id)
            self._rooms.setdefault(topic, chat_id)
            room = Room(topic, id=str(chat_id), session=self)
        else:
            self._contacts.setdefault(name, user_id)
            listener = Contact(self._bot_name, id=str(self._bot_id), session=self)

        msg_type, attachment = await self._classify(message)
        text = message.get("text", "") or message.get("caption", "") or ""

        return Message(
            type=msg_type,
            talker=talker,
            text=text,
            room=room,
            listener=listener,
            date=datetime.fromtimestamp(message.get("date", 0)).astimezone(),
            attachment=attachment,
            session=self,
        )

    async def _classify(self, message: dict) -> tuple[MessageType, FileBox | None]:
        """Map a Telegram message to its MessageType; downloads audio for transcription."""
        if "text" in message:
            return MessageType.Text, None
        for key in ("voice", "audio"):
            audio = message.get(key)
            if audio:
                box = await self._download_file(audio.get("file_id", ""), audio.get("file_name", ""))
                return MessageType.Audio, box
        if "photo" in message:
            return MessageType.Image, None
        if "video" in message:
            return MessageType.Video, None
        if "sticker" in message:
            return MessageType.Emoticon, None
        if "document" in message:
            return MessageType.Attachment, None
        if "contact" in message:
            return MessageType.Contact, None
        if "location" in message:
            return MessageType.Location, None
        return MessageType.Unknown, None

    async def _download_file(self, file_id: str, filename: str = "") -> FileBox | None:
        """Download a file from Telegram servers into memory."""
        if not file_id:
            return None

        try:
            file_info = await self._api("getFile", file_id=file_id)
            file_path = file_info.get("file_path", "")
            if not file_path:
                log.warning("No file_path returned for file_id: %s", file_id)
                return None

            download_url = f"https://api.telegram.org/file/bot{self.token}/{file_path}"

            client = await self._get_client()
            resp = await client.get(download_url)
            resp.raise_for_status()
            return FileBox(name=filename or Path(file_path).name, data=resp.content)
        except Exception as e:
            log.warning("Failed to download Telegram file %s: %s", file_id, e)
            return None

    async def find_contact(self, name: str) -> Contact | None:
        chat_id = self._contacts.get(name)
        if chat_id is None:
            return None
        return Contact(name, id=str(chat_id), session=self)

    async def find_room(self, topic: str) -> Room | None:
        chat_id = self._rooms.get(topic)
        if chat_id is None:
            return None
        return Room(topic, id=str(chat_id), session=self)

    def _resolve_target(self, target: Contact | Room) -> int:
        """Resolve a Contact/Room handle to a Telegram chat_id."""
        if target.id.lstrip("-").isdigit():
            chat_id = int(target.id)
        elif isinstance(target, Room):
            chat_id = self._rooms.get(target.topic)
        else:
            chat_id = self._contacts.get(target.name)
        if chat_id is None:
            name = target.topic if isinstance(target, Room) else target.name
            raise ValueError(f"Unknown chat: {name!r}")

        # Block self-send
        if chat_id == self._bot_id:
            raise ValueError(
                f"Self-send blocked: target resolves to bot's own ID ({self._bot_id})."
            )
        return chat_id

    async def say(self, target: Contact | Room, sayable: Sayable) -> None:
        """Send text (chunked) or a file to a chat."""
        chat_id = self._resolve_target(target)

        if isinstance(sayable, FileBox):
            method, field = _send_method(sayable.name)
            await self._api(
                method,
                chat_id=chat_id,
                _files={field: (sayable.name, sayable.data, _guess_mime(Path(sayable.name)))},
            )
        elif sayable:
            for chunk in self._chunk_text(sayable):
                await self._api("sendMessage", chat_id=chat_id, text=chunk)

    def _chunk_text(self, text: str) -> list[str]:
        """Split text on newline boundaries within chunk limit."""
        if len(text) <= self.chunk_limit:
            return [text]

        chunks = []
        current = ""
        for line in text.split("\n"):
            if current and len(current) + len(line) + 1 > self.chunk_limit:
                chunks.append(current)
                current = line
            else:
                current = current + "\n" + line if current else line

        if current:
            while len(current) > self.chunk_limit:
                chunks.append(current[:self.chunk_limit])
                current = current[self.chunk_limit:]
            if current:
                chunks.append(current)

        return chunks


def _send_method(filename: str) -> tuple[str, str]:
    """Pick the Bot API send method and multipart field for a file."""
    mime = _guess_mime(Path(filename))
    if mime == "audio/ogg":
        return "sendVoice", "voice"
    if mime.startswith("audio/"):
        return "sendAudio", "audio"
    if mime.startswith("image/"):
        return "sendPhoto", "photo"
    if mime.startswith("video/"):
        return "sendVideo", "video"
    return "sendDocument", "document"


def _guess_mime(path: Path) -> str:
    """Guess MIME type from file extension."""
    ext = path.suffix.lower()
    return {
        ".jpg": "image/jpeg",
        ".jpeg": "image/jpeg",
        ".png": "image/png",
        ".gif": "image/gif",
        ".webp": "image/webp",
        ".mp4": "video/mp4",
        ".mov": "video/quicktime",
        ".ogg": "audio/ogg",
        ".mp3": "audio/mpeg",
        ".m4a": "audio/mp4",
        ".wav": "audio/wav",
        ".pdf": "application/pdf",
        ".txt": "text/plain",
    }.get(ext, "application/octet-stream")

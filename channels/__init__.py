"""Session interface and shared message types.

Defines the contract between the daemon and IM transports.
Each session turns its transport into a stream of SessionEvents and
exposes contact/room lookup plus a say() primitive.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from config import Config


class MessageType(IntEnum):
    """Message types, numbered as in the Wechaty puppet schema."""

    Unknown = 0
    Attachment = 1
    Audio = 2
    Contact = 3
    ChatHistory = 4
    Emoticon = 5
    Image = 6
    Text = 7
    Location = 8
    MiniProgram = 9
    GroupNote = 10
    Transfer = 11
    RedEnvelope = 12
    Recalled = 13
    Url = 14
    Video = 15
    Post = 16


@dataclass
class FileBox:
    name: str       # Filename shown to the receiver
    data: bytes

    @classmethod
    def from_file(cls, path: str | Path, name: str = "") -> FileBox:
        p = Path(path)
        return cls(name=name or p.name, data=p.read_bytes())


Sayable = str | FileBox


@dataclass(eq=False)
class Contact:
    name: str
    id: str = ""
    session: Session | None = field(default=None, repr=False)

    async def say(self, sayable: Sayable) -> None:
        if self.session is None:
            raise RuntimeError(f"Contact {self.name!r} is not bound to a session")
        await self.session.say(self, sayable)


@dataclass(eq=False)
class Room:
    topic: str
    id: str = ""
    session: Session | None = field(default=None, repr=False)

    async def say(self, sayable: Sayable) -> None:
        if self.session is None:
            raise RuntimeError(f"Room {self.topic!r} is not bound to a session")
        await self.session.say(self, sayable)


@dataclass
class Message:
    type: MessageType
    talker: Contact
    text: str = ""
    room: Room | None = None
    listener: Contact | None = None   # Addressee of a direct message
    self_sent: bool = False           # Sent by the logged-in account
    date: datetime = field(default_factory=lambda: datetime.now().astimezone())
    attachment: FileBox | None = None
    session: Session | None = field(default=None, repr=False)

    def __str__(self) -> str:
        where = f"Room<{self.room.topic}>" if self.room else "DM"
        return f"Message#{self.type.name}[{where} {self.talker.name}] {self.text[:50]}"


@dataclass
class SessionEvent:
    kind: str           # start | stop | scan | login | logout | message | ready | error
    payload: Any = None


class Session(Protocol):
    current_user: Contact | None

    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    def events(self) -> AsyncIterator[SessionEvent]: ...
    async def find_contact(self, name: str) -> Contact | None: ...
    async def find_room(self, topic: str) -> Room | None: ...
    async def say(self, target: Contact | Room, sayable: Sayable) -> None: ...


# ─── Conversation helpers ─────────────────────────────────────────


def is_from_group_chat(message: Message) -> bool:
    return message.room is not None


def target_contact_name(message: Message) -> str:
    """Name of the other party of a direct message.

    Self-sent messages resolve to the listener, everything else to the talker.
    """
    if message.self_sent:
        if message.listener is None:
            raise ValueError("Message target cannot be resolved")
        return message.listener.name
    return message.talker.name


def thread_owner(message: Message) -> str:
    """Conversation key for stateful LLM context: room topic or contact name."""
    if message.room is not None:
        return message.room.topic
    return target_contact_name(message)


async def respond(message: Message, response: Sayable) -> None:
    """Reply in the conversation a message came from.

    Group messages go to the room. A self-sent direct message goes to
    its listener, any other direct message back to the talker.
    """
    if message.room is not None:
        await message.room.say(response)
        return
    if message.self_sent:
        if message.listener is None:
            raise ValueError("Message target cannot be resolved")
        await message.listener.say(response)
    else:
        await message.talker.say(response)


def create_session(config: Config) -> Session:
    """Factory: create session from config."""
    ch_type = config.channel_type

    if ch_type == "cli":
        from .cli import CLISession
        cli = config.cli_config
        return CLISession(
            talker=cli.get("talker", "cli"),
            self_name=cli.get("self_name", cli.get("talker", "cli")),
            room=cli.get("room", ""),
        )
    if ch_type == "telegram":
        import os

        from .telegram import TelegramSession
        tg = config.telegram_config
        token_env = tg.get("token_env", "BOTGATE_TELEGRAM_TOKEN")
        token = os.environ.get(token_env, "")
        if not token:
            raise ValueError(f"Telegram token not found in env var: {token_env}")
        return TelegramSession(
            token=token,
            allow_from=tg.get("allow_from", []),
            chunk_limit=tg.get("text_chunk_limit", 4000),
            contacts=tg.get("contacts", {}),
            rooms=tg.get("rooms", {}),
            owner=tg.get("owner", ""),
        )
    raise ValueError(f"Unknown channel type: {ch_type!r}")

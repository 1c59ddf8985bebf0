"""CLI session: stdin/stdout for testing.

The simplest possible transport. No IM account needed: every input line
is a text message from the configured talker, every send is printed.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from . import Contact, FileBox, Message, MessageType, Room, Sayable, SessionEvent


class CLISession:
    def __init__(self, talker: str = "cli", self_name: str = "cli", room: str = ""):
        self.talker = Contact(talker, id=talker, session=self)
        self.current_user: Contact | None = Contact(self_name, id=self_name, session=self)
        self.room = Room(room, id=room, session=self) if room else None
        self._running = False

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def events(self) -> AsyncIterator[SessionEvent]:
        yield SessionEvent("start")
        yield SessionEvent("login", self.current_user)
        yield SessionEvent("ready")
        while self._running:
            try:
                text = await asyncio.to_thread(input, "You> ")
            except (EOFError, KeyboardInterrupt):
                break
            if not text.strip():
                continue
            yield SessionEvent("message", Message(
                type=MessageType.Text,
                talker=self.talker,
                text=text,
                room=self.room,
                session=self,
            ))
        yield SessionEvent("stop")

    async def find_contact(self, name: str) -> Contact | None:
        return Contact(name, id=name, session=self)

    async def find_room(self, topic: str) -> Room | None:
        return Room(topic, id=topic, session=self)

    async def say(self, target: Contact | Room, sayable: Sayable) -> None:
        where = target.topic if isinstance(target, Room) else target.name
        if isinstance(sayable, FileBox):
            print(f"Bot[{where}]> [file: {sayable.name}, {len(sayable.data)} bytes]", flush=True)
        elif sayable:
            print(f"Bot[{where}]> {sayable}", flush=True)

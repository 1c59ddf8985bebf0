"""Ping: liveness check."""

from __future__ import annotations

import logging
import re

from channels import Message, MessageType, respond

from . import Plugin

log = logging.getLogger(__name__)

_TRIGGER = re.compile(r"^\s*/ping", re.IGNORECASE)


class Ping(Plugin):
    name = "Ping"
    version = "v0.0.1"
    description = "A test plugin. Send /ping to test it."

    def __init__(self):
        super().__init__()
        self.validators = {MessageType.Text: lambda message: bool(_TRIGGER.match(message.text))}

    async def handle(self, message: Message) -> None:
        log.info("Ping from %s", message.talker.name)
        await respond(message, "pong!")

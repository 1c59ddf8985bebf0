"""Chat Bot: LLM conversation triggered by @name, text or voice."""

from __future__ import annotations

import logging
import re

from channels import FileBox, Message, MessageType, respond, thread_owner
from providers import ChatProvider

from . import Plugin

log = logging.getLogger(__name__)

QUOTE_LENGTH = 20


class ChatBot(Plugin):
    name = "Chat Bot"
    version = "v0.1.0"

    def __init__(self, provider: ChatProvider, names: list[str], audio_response: bool = True):
        super().__init__()
        if not names:
            raise ValueError("ChatBot needs at least one trigger name")
        self.provider = provider
        self.names = list(names)
        self.audio_response = audio_response
        alternatives = "|".join(re.escape(n) for n in self.names)
        self._text_trigger = re.compile(rf"^\s*@({alternatives})", re.IGNORECASE)
        self._audio_trigger = re.compile(rf"^\s*({alternatives})", re.IGNORECASE)
        self.description = (
            "An intelligent conversational chat bot. Send @ + one of the following: "
            f"({','.join(self.names)}) + your message to talk to the bot! "
            "Support both text and audio messages."
        )
        # Audio is accepted unconditionally; the handler transcribes once
        # and drops transcripts that don't start with a bot name.
        self.validators = {
            MessageType.Text: self._is_addressed,
            MessageType.Audio: lambda message: True,
        }

    def _is_addressed(self, message: Message) -> bool:
        return bool(self._text_trigger.match(message.text))

    @staticmethod
    def _remove_trigger(text: str, pattern: re.Pattern) -> str:
        match = pattern.search(text)
        if not match:
            raise ValueError(f"{text!r} is not addressed to the chat bot")
        return (text[:match.start()] + text[match.end():]).strip()

    @staticmethod
    def format_reply(question: str, answer: str, talker_name: str = "") -> str:
        quote = question[:QUOTE_LENGTH] + "..." if len(question) >= QUOTE_LENGTH else question
        mention = f"@{talker_name}\n" if talker_name else ""
        return f"{mention}{quote}\n===============\n{answer}"

    async def handle(self, message: Message) -> None:
        if message.type == MessageType.Audio:
            if message.attachment is None:
                log.warning("Audio message from %s has no attachment", message.talker.name)
                return
            text = await self.provider.speech_to_text(message.attachment.data, message.attachment.name)
            if not self._audio_trigger.match(text):
                log.debug("Transcript not addressed to the chat bot: %r", text[:50])
                return
            question = self._remove_trigger(text, self._audio_trigger)
        elif message.type == MessageType.Text:
            question = self._remove_trigger(message.text, self._text_trigger)
        else:
            return

        answer = await self.provider.generate_response(question, thread_owner(message))
        await respond(message, self.format_reply(question, answer, message.talker.name))

        if self.audio_response:
            speech = await self.provider.text_to_speech(answer)
            await respond(message, FileBox(name="response.mp3", data=speech))

"""LLM provider interface.

Defines the contract between plugins and the language-model backend.
Conversation state is keyed by an owner (room topic or contact name)
and an assistant name selecting the system prompt.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from config import Config
    from threads import ThreadStore

log = logging.getLogger(__name__)

HABIT_TRACKER_PROMPT = """\
You are a professional cheerleader in a group chat. Members check in their \
habits and you praise them warmly.
You receive structured data with these fields:
  time: check-in time
  name: who checked in
  event: the kind of habit (leetcode, workout, ...)
  note: the member's own note
Write an enthusiastic, varied compliment of two or three sentences. Stay \
positive and avoid crude language. Reply in the language of the note."""

DEFAULT_ASSISTANTS: dict[str, str] = {
    "default": "",
    "habit_tracker": HABIT_TRACKER_PROMPT,
}


class ChatProvider(Protocol):
    async def generate_response(self, text: str, owner: str, assistant: str = "default") -> str:
        """Continue the owner's thread with a user message, return the answer."""
        ...

    async def text_to_speech(self, text: str) -> bytes:
        ...

    async def speech_to_text(self, data: bytes, filename: str = "audio.ogg") -> str:
        ...


def create_provider(config: Config, store: ThreadStore) -> ChatProvider:
    """Factory: create the chat provider from the [llm] section."""
    provider_type = config.llm_provider

    if provider_type == "openai-compat":
        from .openai_compat import OpenAICompatProvider
        return OpenAICompatProvider(
            api_key=config.api_key("openai"),
            model=config.llm_model,
            store=store,
            base_url=config.llm_base_url,
            assistants={**DEFAULT_ASSISTANTS, **config.llm_assistants},
            tts_model=config.llm_tts_model,
            tts_voice=config.llm_tts_voice,
            stt_model=config.llm_stt_model,
            history_messages=config.llm_history_messages,
            timeout=config.llm_timeout,
        )
    raise ValueError(f"Unknown provider type: {provider_type!r}")

"""OpenAI-compatible provider.

Chat completions with per-owner history from the thread store, plus
speech endpoints for TTS and transcription. Works with OpenAI cloud or
any server implementing the same API.
"""

from __future__ import annotations

import asyncio
import logging

import openai

from threads import ThreadStore

log = logging.getLogger(__name__)


class OpenAICompatProvider:
    def __init__(
        self,
        api_key: str,
        model: str,
        store: ThreadStore,
        base_url: str = "",
        assistants: dict[str, str] | None = None,
        tts_model: str = "tts-1",
        tts_voice: str = "alloy",
        stt_model: str = "whisper-1",
        history_messages: int = 40,
        timeout: float = 60.0,
    ):
        kwargs: dict = {"api_key": api_key or "not-needed", "timeout": timeout}
        if base_url:
            kwargs["base_url"] = base_url
        self.client = openai.OpenAI(**kwargs)
        self.model = model
        self.store = store
        self.assistants = assistants or {}
        self.tts_model = tts_model
        self.tts_voice = tts_voice
        self.stt_model = stt_model
        self.history_messages = history_messages

    def _build_messages(self, prompt: str, thread_id: str, text: str) -> list[dict]:
        messages: list[dict] = []
        if prompt:
            messages.append({"role": "system", "content": prompt})
        messages.extend(self.store.history(thread_id, self.history_messages))
        messages.append({"role": "user", "content": text})
        return messages

    async def generate_response(self, text: str, owner: str, assistant: str = "default") -> str:
        thread_id = self.store.get_or_create_thread(f"{assistant}:{owner}")
        messages = self._build_messages(self.assistants.get(assistant, ""), thread_id, text)

        response = await asyncio.to_thread(
            self.client.chat.completions.create,
            model=self.model,
            messages=messages,
        )
        answer = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not answer:
            raise RuntimeError(f"Empty completion for {owner} ({assistant})")

        self.store.append(thread_id, "user", text)
        self.store.append(thread_id, "assistant", answer)
        log.debug("Completion for %s (%s): %d chars", owner, assistant, len(answer))
        return answer

    async def text_to_speech(self, text: str) -> bytes:
        response = await asyncio.to_thread(
            self.client.audio.speech.create,
            model=self.tts_model,
            voice=self.tts_voice,
            input=text,
        )
        return response.content

    async def speech_to_text(self, data: bytes, filename: str = "audio.ogg") -> str:
        result = await asyncio.to_thread(
            self.client.audio.transcriptions.create,
            model=self.stt_model,
            file=(filename, data),
        )
        text = (result.text or "").strip()
        if not text:
            raise RuntimeError("Transcription returned empty text")
        return text

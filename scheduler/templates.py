"""Message templates: turn a task action into something sayable at fire time."""

from __future__ import annotations

import asyncio
import logging
import posixpath
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

from channels import FileBox, Sayable

from .tasks import Action, is_url

log = logging.getLogger(__name__)

Producer = Callable[[Action, Any], Awaitable[Sayable]]

FETCH_TIMEOUT = 30.0


@dataclass
class Template:
    producer: Producer
    other_args: Any = None


def filename_for(location: str) -> str:
    if is_url(location):
        return posixpath.basename(urlparse(location).path)
    return Path(location).name


async def fetch_resource(location: str) -> bytes:
    """GET an http(s) URL (non-2xx raises) or read a local file."""
    if not is_url(location):
        try:
            return await asyncio.to_thread(Path(location).read_bytes)
        except OSError as e:
            raise RuntimeError(f"Failed to read file at {location}") from e

    async with httpx.AsyncClient(timeout=FETCH_TIMEOUT, follow_redirects=True) as client:
        resp = await client.get(location)
        resp.raise_for_status()
        return resp.content


async def custom_message(action: Action, other_args: Any = None) -> Sayable:
    data = action.input
    kind = data.get("type")
    if kind == "text":
        return data["text"]
    if kind in ("image", "audio", "video"):
        location = data["location"]
        content = await fetch_resource(location)
        name = data.get("filename") or filename_for(location)
        log.debug("Fetched %s (%d bytes) as %s", location, len(content), name)
        return FileBox(name=name, data=content)
    raise ValueError(f"Invalid input type {kind!r}")


async def weather(action: Action, other_args: Any = None) -> Sayable:
    cities = action.input["cities"]
    joined = ",".join(cities)
    query = re.sub(r"\s+", "+", " ".join(cities).strip())
    subject = "is the weather" if len(cities) == 1 else "are the weathers"
    return f"Here {subject} for {joined}: https://www.google.com/search?q=weather+for+{query}"


async def news(action: Action, other_args: Any = None) -> Sayable:
    topic = action.input.get("topic") or "default"
    query = re.sub(r" +", "+", topic)
    return f'Here are some news for "{topic}": https://www.google.com/search?q={query}'


TEMPLATES: dict[str, Template] = {
    "CustomMessage": Template(custom_message),
    "Weather": Template(weather),
    "News": Template(news),
}

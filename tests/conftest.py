"""Shared fixtures for the botgate test suite.

All tests use temporary directories and mock objects.
Nothing touches ~/.botgate/ or a real IM account.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path so imports work
_root = Path(__file__).parent.parent
sys.path.insert(0, str(_root))

from channels import Contact, Message, MessageType, Room  # noqa: E402


class FakeSession:
    """In-memory session: known contacts/rooms, records every send."""

    def __init__(self, self_name="admin", contacts=(), rooms=()):
        self.current_user = Contact(self_name, id=self_name, session=self)
        self.contacts = set(contacts)
        self.rooms = set(rooms)
        self.sent = []          # [(target name, sayable)]
        self.lookups = []       # [(kind, name)]

    async def start(self):
        pass

    async def stop(self):
        pass

    async def events(self):
        return
        yield

    async def find_contact(self, name):
        self.lookups.append(("contact", name))
        return Contact(name, id=name, session=self) if name in self.contacts else None

    async def find_room(self, topic):
        self.lookups.append(("room", topic))
        return Room(topic, id=topic, session=self) if topic in self.rooms else None

    async def say(self, target, sayable):
        where = target.topic if isinstance(target, Room) else target.name
        self.sent.append((where, sayable))

    def texts(self):
        return [s for _, s in self.sent if isinstance(s, str)]


@pytest.fixture
def session():
    return FakeSession(self_name="admin", contacts={"alice", "admin"}, rooms={"Team"})


@pytest.fixture
def make_message(session):
    """Factory for messages bound to the fake session."""

    def _make(text="", talker="alice", room=None, msg_type=MessageType.Text,
              self_sent=False, listener=None, **kwargs):
        return Message(
            type=msg_type,
            talker=Contact(talker, id=talker, session=session),
            text=text,
            room=Room(room, id=room, session=session) if room else None,
            listener=Contact(listener, id=listener, session=session) if listener else None,
            self_sent=self_sent,
            session=session,
            **kwargs,
        )

    return _make


@pytest.fixture
def minimal_toml_data(tmp_path):
    """Minimal valid config data (as parsed dict, not raw TOML)."""
    return {
        "bot": {"name": "Robert"},
        "channel": {
            "type": "cli",
            "cli": {"talker": "alice", "self_name": "alice", "room": "Team"},
            "telegram": {
                "token_env": "BOTGATE_TELEGRAM_TOKEN",
                "allow_from": [111],
                "contacts": {"alice": 111},
                "rooms": {"Team": -100222},
                "owner": "alice",
            },
        },
        "whitelist": {"groups": ["Team"], "contacts": ["alice"]},
        "plugins": {"chatbot_names": ["Robert", "bot"], "audio_response": False},
        "scheduler": {"timezone": "America/Toronto"},
        "tasks": [
            {
                "name": "hello",
                "target": {"type": "room", "name": "Team"},
                "cron_time": "0 9 * * *",
                "action": {"template": "CustomMessage", "input": {"type": "text", "text": "hi"}},
            },
        ],
        "llm": {"model": "test-model"},
        "paths": {
            "state_dir": str(tmp_path / "state"),
            "threads_db": str(tmp_path / "state" / "threads.db"),
            "log_file": str(tmp_path / "botgate.log"),
        },
    }

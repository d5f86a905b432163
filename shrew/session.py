"""Conversation model and the JSON-backed session store."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .report import PersistenceFailure

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_FILE = "history.json"
ROLES = ("user", "assistant", "system")


@dataclass
class Message:
    """One conversation entry.

    ``rendered`` is the display cache owned by RenderCache; it is never
    persisted and an empty string means "not rendered yet".
    """

    role: str
    content: str
    rendered: str = field(default="", compare=False, repr=False)

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        role = data.get("role")
        if role not in ROLES:
            raise ValueError(f"invalid message role: {role!r}")
        content = data.get("content")
        if not isinstance(content, str):
            raise ValueError("message content must be a string")
        return cls(role=role, content=content)


@dataclass
class Session:
    id: str
    timestamp: str
    messages: list[Message]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, key: str, data: dict) -> "Session":
        if not isinstance(data, dict):
            raise ValueError(f"session {key!r} is not an object")
        messages = data.get("messages") or []
        if not isinstance(messages, list):
            raise ValueError(f"session {key!r}: messages must be a list")
        return cls(
            id=str(data.get("id") or key),
            timestamp=str(data.get("timestamp") or ""),
            messages=[Message.from_dict(m) for m in messages],
        )


def now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionStore:
    """Durable catalog of sessions kept in a single JSON file.

    Every save is a whole-catalog read-modify-write, so the store assumes
    one process working on one session at a time.
    """

    def __init__(self, path: str | Path = DEFAULT_HISTORY_FILE):
        self.path = Path(path)

    def list_all(self) -> dict[str, Session]:
        """Return the full catalog. A missing file is an empty catalog."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise PersistenceFailure(f"cannot read {self.path}: {e}") from e

        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise PersistenceFailure(f"{self.path}: invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceFailure(f"{self.path}: expected a JSON object at top level")

        sessions = data.get("sessions") or {}
        if not isinstance(sessions, dict):
            raise PersistenceFailure(f"{self.path}: 'sessions' must be an object")
        try:
            return {key: Session.from_dict(key, raw) for key, raw in sessions.items()}
        except ValueError as e:
            raise PersistenceFailure(f"{self.path}: {e}") from e

    def load(self, session_id: str) -> list[Message] | None:
        session = self.list_all().get(session_id)
        if session is None:
            return None
        return session.messages

    def save(self, session_id: str, messages: list[Message]) -> Session:
        """Upsert the full snapshot of one session and rewrite the catalog."""
        catalog = self.list_all()
        session = Session(
            id=session_id,
            timestamp=now_rfc3339(),
            messages=[Message(m.role, m.content) for m in messages],
        )
        catalog[session_id] = session
        self._write(catalog)
        logger.debug(
            "saved session %s (%d messages) to %s",
            session_id,
            len(messages),
            self.path,
        )
        return session

    def _write(self, catalog: dict[str, Session]) -> None:
        payload = {"sessions": {key: s.to_dict() for key, s in catalog.items()}}
        text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceFailure(f"cannot write {self.path}: {e}") from e

"""
Session persistence for conversations.

One JSON document per session lives under ``<config_dir>/sessions`` and
holds the session record, its messages and its checkpoints. Saving also
writes a small pointer file into the working directory so the next run in
the same project can pick the conversation back up.
"""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, ValidationError

from ..llm.base import LLMMessage

logger = structlog.get_logger()

LOCAL_POINTER_FILE = ".codecli_session.json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionNotFoundError(Exception):
    """No stored session matches the requested id."""


class SessionInfo(BaseModel):
    """Session metadata."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    provider: str = ""
    cwd: str = ""


class Checkpoint(BaseModel):
    """Marker into the message history that can be rewound to."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    label: str
    message_index: int
    timestamp: datetime = Field(default_factory=_utcnow)


class SessionFile(BaseModel):
    """On-disk layout of a session."""

    session: SessionInfo
    messages: list[LLMMessage] = Field(default_factory=list)
    checkpoints: list[Checkpoint] = Field(default_factory=list)


class SessionStore:
    """Owns the current session's messages and checkpoints."""

    def __init__(self, sessions_dir: Path, cwd: Path | None = None):
        self.sessions_dir = Path(sessions_dir)
        self.cwd = cwd or Path.cwd()
        self.current: SessionInfo | None = None
        self.messages: list[LLMMessage] = []
        self.checkpoints: list[Checkpoint] = []

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def local_pointer(self) -> Path:
        return self.cwd / LOCAL_POINTER_FILE

    def create(self, provider: str = "") -> SessionInfo:
        """Start a new, empty session."""
        now = _utcnow()
        self.current = SessionInfo(
            name=f"session-{int(now.timestamp() * 1000)}",
            created_at=now,
            updated_at=now,
            provider=provider,
            cwd=str(self.cwd),
        )
        self.messages = []
        self.checkpoints = []
        logger.info("Created new session", session_id=self.current.id)
        return self.current

    def add_message(self, message: LLMMessage) -> LLMMessage:
        self.messages.append(message)
        return message

    def replace_messages(self, messages: list[LLMMessage]) -> None:
        """Swap in a new history wholesale; checkpoints no longer apply."""
        self.messages = list(messages)
        self.checkpoints = []

    def clear_messages(self) -> None:
        self.messages = []
        self.checkpoints = []

    def create_checkpoint(self, label: str | None = None) -> Checkpoint:
        checkpoint = Checkpoint(
            label=label or f"checkpoint-{len(self.checkpoints) + 1}",
            message_index=len(self.messages),
        )
        self.checkpoints.append(checkpoint)
        logger.debug("Checkpoint created", label=checkpoint.label, index=checkpoint.message_index)
        return checkpoint

    def rewind_to(self, checkpoint_id: str) -> bool:
        """Truncate history to a checkpoint and drop the checkpoints after it."""
        checkpoint = next((c for c in self.checkpoints if c.id == checkpoint_id), None)
        if checkpoint is None:
            return False

        self.messages = self.messages[:checkpoint.message_index]
        self.checkpoints = [
            c for c in self.checkpoints if c.message_index <= checkpoint.message_index
        ]
        logger.info("Rewound session", checkpoint=checkpoint.label, messages=len(self.messages))
        return True

    def save(self) -> None:
        """Persist the session and refresh the local auto-resume pointer."""
        if self.current is None:
            return

        self.current.updated_at = _utcnow()
        data = SessionFile(
            session=self.current,
            messages=self.messages,
            checkpoints=self.checkpoints,
        )

        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        path = self.sessions_dir / f"{self.current.id}.json"
        path.write_text(data.model_dump_json(indent=2), encoding="utf-8")

        self.local_pointer.write_text(
            json.dumps(
                {"sessionId": self.current.id, "updatedAt": self.current.updated_at.isoformat()},
                indent=2,
            ),
            encoding="utf-8",
        )
        logger.debug("Session saved", session_id=self.current.id, messages=len(self.messages))

    def load(self, session_id: str) -> SessionInfo:
        """Load by exact id, else the most recently updated id with that prefix."""
        if not session_id or "/" in session_id or "\\" in session_id or session_id in (".", ".."):
            raise SessionNotFoundError(f"Invalid session id: {session_id!r}")

        path = self.sessions_dir / f"{session_id}.json"
        if path.is_file():
            return self._load_file(path)

        matches = [s for s in self.list_sessions() if s.id.startswith(session_id)]
        if not matches:
            raise SessionNotFoundError(f"Session not found: {session_id}")

        best = max(matches, key=lambda s: s.updated_at)
        return self._load_file(self.sessions_dir / f"{best.id}.json")

    def load_latest(self) -> SessionInfo:
        sessions = self.list_sessions()
        if not sessions:
            raise SessionNotFoundError("No previous session found")
        latest = max(sessions, key=lambda s: s.updated_at)
        return self._load_file(self.sessions_dir / f"{latest.id}.json")

    def load_local(self) -> SessionInfo | None:
        """Resume the session named by the working-directory pointer, if any."""
        if not self.local_pointer.is_file():
            return None

        try:
            pointer = json.loads(self.local_pointer.read_text(encoding="utf-8"))
            session_id = pointer.get("sessionId")
            if not session_id:
                return None
            return self.load(session_id)
        except (OSError, ValueError, SessionNotFoundError) as e:
            logger.info("Local session not resumed", error=str(e))
            return None

    def list_sessions(self) -> list[SessionInfo]:
        """Every readable stored session, newest first."""
        if not self.sessions_dir.is_dir():
            return []

        sessions = []
        for path in self.sessions_dir.glob("*.json"):
            try:
                sessions.append(SessionFile.model_validate_json(path.read_bytes()).session)
            except (OSError, ValidationError) as e:
                logger.warning("Skipping unreadable session file", path=str(path), error=str(e))
        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

    def _load_file(self, path: Path) -> SessionInfo:
        try:
            data = SessionFile.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            raise SessionNotFoundError(f"Could not read session {path.stem}: {e}") from e

        self.current = data.session
        self.messages = data.messages
        self.checkpoints = data.checkpoints
        logger.info("Loaded session", session_id=data.session.id, messages=len(data.messages))
        return data.session

"""Per-conversation session state."""

import json
import os
import secrets
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from filelock import FileLock
from loguru import logger

from droidgram.autonomy.config import AutonomyConfig, apply_preset, deserialize_config, serialize_config
from droidgram.utils.helpers import ensure_dir, safe_filename

# Maximum number of sessions to keep in memory cache (LRU eviction)
_MAX_CACHED_SESSIONS = 200

AUTONOMY_KEY = "autonomy_config"
DROID_SESSION_KEY = "droid_session_id"
AGENT_KEY = "active_agent"
MISSION_KEY = "active_mission"
LAST_JOB_KEY = "last_job_id"


@dataclass
class Session:
    """
    State for one conversation.

    Messages are kept for /jobs and debugging only; Droid owns the real
    conversation history and is resumed through droid_session_id.
    """

    key: str  # platform:conversation_id
    messages: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def add_message(self, role: str, content: str, **kwargs: Any) -> None:
        """Add a message to the session."""
        self.messages.append({
            "role": role,
            "content": content,
            "timestamp": datetime.now().isoformat(),
            **kwargs
        })
        self.updated_at = datetime.now()

    def clear(self) -> None:
        """Drop messages and the Droid session, keep autonomy settings."""
        autonomy = self.metadata.get(AUTONOMY_KEY)
        self.messages = []
        self.metadata = {AUTONOMY_KEY: autonomy} if autonomy is not None else {}
        self.updated_at = datetime.now()

    # Typed accessors over the metadata dict

    def get_autonomy(self, default_level: str = "medium") -> AutonomyConfig:
        raw = self.metadata.get(AUTONOMY_KEY)
        if raw is None:
            return apply_preset(default_level)
        return deserialize_config(raw)

    def set_autonomy(self, config: AutonomyConfig) -> None:
        self.metadata[AUTONOMY_KEY] = serialize_config(config)
        self.updated_at = datetime.now()

    @property
    def droid_session_id(self) -> str | None:
        return self.metadata.get(DROID_SESSION_KEY)

    @droid_session_id.setter
    def droid_session_id(self, value: str | None) -> None:
        if value is None:
            self.metadata.pop(DROID_SESSION_KEY, None)
        else:
            self.metadata[DROID_SESSION_KEY] = value
        self.updated_at = datetime.now()

    @property
    def active_agent(self) -> str | None:
        return self.metadata.get(AGENT_KEY)

    @property
    def active_mission(self) -> str | None:
        return self.metadata.get(MISSION_KEY)

    def set_agent(self, agent: str | None, mission: str | None = None) -> None:
        if agent is None:
            self.metadata.pop(AGENT_KEY, None)
            self.metadata.pop(MISSION_KEY, None)
        else:
            self.metadata[AGENT_KEY] = agent
            if mission:
                self.metadata[MISSION_KEY] = mission
            else:
                self.metadata.pop(MISSION_KEY, None)
        self.updated_at = datetime.now()


class SessionManager:
    """
    Manages conversation sessions.

    Sessions are stored as JSONL files (metadata line first) in the
    sessions directory. Uses LRU cache to limit memory usage.
    Concurrent writers are serialized by a file lock; last write wins.
    """

    def __init__(self, sessions_dir: Path | None = None):
        self.sessions_dir = ensure_dir(sessions_dir or Path.home() / ".droidgram" / "sessions")
        self._cache: OrderedDict[str, Session] = OrderedDict()

    def _get_session_path(self, key: str) -> Path:
        safe_key = safe_filename(key.replace(":", "_"))
        return self.sessions_dir / f"{safe_key}.jsonl"

    def get_or_create(self, key: str) -> Session:
        """Get an existing session or create a new one."""
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        session = self._load(key)
        if session is None:
            session = Session(key=key)

        self._remember(session)
        return session

    def _remember(self, session: Session) -> None:
        self._cache[session.key] = session
        self._cache.move_to_end(session.key)
        if len(self._cache) > _MAX_CACHED_SESSIONS:
            self._cache.popitem(last=False)

    def _load(self, key: str) -> Session | None:
        """Load a session from disk, skipping corrupt lines."""
        path = self._get_session_path(key)
        if not path.exists():
            return None

        messages = []
        metadata: dict[str, Any] = {}
        created_at = None
        corrupt_lines = 0

        try:
            with open(path, encoding="utf-8") as f:
                for line_num, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        corrupt_lines += 1
                        if corrupt_lines <= 3:
                            logger.warning(f"Skipped corrupt line {line_num} in session {key}")
                        continue

                    if data.get("_type") == "metadata":
                        metadata = data.get("metadata", {})
                        created_at_str = data.get("created_at")
                        if created_at_str:
                            try:
                                created_at = datetime.fromisoformat(created_at_str)
                            except (ValueError, TypeError):
                                created_at = None
                    else:
                        messages.append(data)
        except OSError as e:
            logger.warning(f"Failed to load session {key}: {e}")
            return None

        if corrupt_lines:
            logger.warning(f"Session {key}: loaded with {corrupt_lines} corrupt line(s) skipped")

        return Session(
            key=key,
            messages=messages,
            created_at=created_at or datetime.now(),
            metadata=metadata,
        )

    def save(self, session: Session) -> None:
        """Save a session to disk atomically."""
        path = self._get_session_path(session.key)
        tmp_path = path.with_suffix(f".tmp.{secrets.token_hex(4)}")

        with FileLock(path.with_suffix(".lock"), timeout=10):
            try:
                with open(tmp_path, "w", encoding="utf-8", newline="\n") as f:
                    f.write(json.dumps({
                        "_type": "metadata",
                        "created_at": session.created_at.isoformat(),
                        "updated_at": session.updated_at.isoformat(),
                        "metadata": session.metadata,
                    }) + "\n")
                    for msg in session.messages:
                        f.write(json.dumps(msg) + "\n")
                os.replace(str(tmp_path), str(path))
            except Exception:
                tmp_path.unlink(missing_ok=True)
                raise

        self._remember(session)

    def delete(self, key: str) -> bool:
        """Delete a session. Returns False if it did not exist."""
        self._cache.pop(key, None)
        path = self._get_session_path(key)
        if path.exists():
            path.unlink()
            return True
        return False

    def list_sessions(self) -> list[dict[str, Any]]:
        """List stored sessions, most recently updated first."""
        sessions = []
        for path in self.sessions_dir.glob("*.jsonl"):
            try:
                with open(path, encoding="utf-8") as f:
                    first_line = f.readline().strip()
            except OSError:
                continue
            if not first_line:
                continue
            try:
                data = json.loads(first_line)
            except json.JSONDecodeError:
                continue
            if data.get("_type") == "metadata":
                sessions.append({
                    "key": path.stem.replace("_", ":", 1),
                    "created_at": data.get("created_at"),
                    "updated_at": data.get("updated_at"),
                    "path": str(path),
                })
        return sorted(sessions, key=lambda x: x.get("updated_at") or "", reverse=True)

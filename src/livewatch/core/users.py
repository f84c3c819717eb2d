"""Persisted directory of known users (username, avatar URL, live flag)."""

import json
import logging
import os
import tempfile
from pathlib import Path

from .models import UserRecord
from .settings import get_data_dir

logger = logging.getLogger(__name__)


class UserDirectory:
    """Known users keyed case-insensitively by username.

    Stored as ``{username: {username, avatar, live}}`` in users.json.
    """

    def __init__(self, path: Path | None = None):
        self.path = path or get_data_dir() / "users.json"
        self._users: dict[str, UserRecord] = {}

    def __contains__(self, username: str) -> bool:
        return username.casefold() in self._users

    def __len__(self) -> int:
        return len(self._users)

    def get(self, username: str) -> UserRecord | None:
        return self._users.get(username.casefold())

    def all(self) -> list[UserRecord]:
        return list(self._users.values())

    def set_user(self, record: UserRecord) -> None:
        self._users[record.username.casefold()] = record

    def remove_user(self, username: str) -> bool:
        return self._users.pop(username.casefold(), None) is not None

    def set_live(self, live_usernames: list[str]) -> None:
        """Mark exactly the given users as live; everyone else goes offline."""
        live = {name.casefold() for name in live_usernames}
        for key, record in self._users.items():
            record.live = key in live

    def load(self) -> None:
        """Load users from disk; a missing or corrupt file leaves the directory empty."""
        if not self.path.exists():
            return

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Error loading users: {e}")
            return

        if not isinstance(data, dict):
            logger.error(f"Error loading users: expected an object, got {type(data).__name__}")
            return

        for entry in data.values():
            record = UserRecord.from_dict(entry) if isinstance(entry, dict) else None
            if record is None:
                logger.warning(f"Skipping invalid user entry: {entry!r}")
                continue
            self.set_user(record)
        logger.debug(f"Loaded {len(self._users)} users from {self.path}")

    def save(self) -> None:
        """Save users to disk atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {record.username: record.to_dict() for record in self._users.values()}

        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp", prefix="users_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

"""Local recovery cache: the one thing that survives the redirect to the processor.

Holds ``{intent_id, password}`` between starting checkout and finalizing on the confirmation page.
Absent entries read as None; unreadable ones raise, so a broken cache is never mistaken for "no signup".
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path

from provisioning.config import get_settings
from provisioning.errors import SignupError

logger = logging.getLogger(__name__)


def default_ttl() -> timedelta:
    return timedelta(hours=get_settings().recovery_cache_ttl_hours)


class CorruptRecoveryEntryError(SignupError):
    code = "corrupt_recovery_entry"
    status_code = 500


@dataclass
class RecoveryEntry:
    intent_id: str
    password: str | None = None
    saved_at: datetime | None = None

    def is_expired(self, ttl: timedelta, now: datetime | None = None) -> bool:
        if self.saved_at is None:
            return False
        return (now or datetime.now(timezone.utc)) - self.saved_at > ttl


class RecoveryCache:
    ttl: timedelta

    def save(self, entry: RecoveryEntry) -> None:
        raise NotImplementedError

    def load(self) -> RecoveryEntry | None:
        raise NotImplementedError

    def purge(self) -> None:
        raise NotImplementedError


class MemoryRecoveryCache(RecoveryCache):
    def __init__(self, ttl: timedelta | None = None):
        self.ttl = ttl or default_ttl()
        self._entry: RecoveryEntry | None = None

    def save(self, entry: RecoveryEntry) -> None:
        if entry.saved_at is None:
            entry.saved_at = datetime.now(timezone.utc)
        self._entry = entry

    def load(self) -> RecoveryEntry | None:
        if self._entry is None:
            return None
        if self._entry.is_expired(self.ttl):
            self.purge()
            return None
        return self._entry

    def purge(self) -> None:
        self._entry = None


class FileRecoveryCache(RecoveryCache):
    """One JSON file per key, readable by the owner only."""

    def __init__(self, directory: str | Path, key: str = "signup_recovery", ttl: timedelta | None = None):
        self.path = Path(directory) / f"{key}.json"
        self.ttl = ttl or default_ttl()

    def save(self, entry: RecoveryEntry) -> None:
        if entry.saved_at is None:
            entry.saved_at = datetime.now(timezone.utc)
        data = asdict(entry)
        data["saved_at"] = entry.saved_at.isoformat()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.chmod(self.path, 0o600)

    def load(self) -> RecoveryEntry | None:
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            intent_id = raw["intent_id"]
            if not isinstance(intent_id, str) or not intent_id:
                raise ValueError("intent_id must be a non-empty string")
            saved_at = datetime.fromisoformat(raw["saved_at"]) if raw.get("saved_at") else None
            entry = RecoveryEntry(intent_id=intent_id, password=raw.get("password"), saved_at=saved_at)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CorruptRecoveryEntryError(f"Recovery cache at {self.path} is unreadable: {e}") from e
        if entry.is_expired(self.ttl):
            logger.info("[RecoveryCache] entry for intent %s expired; purging", entry.intent_id)
            self.purge()
            return None
        return entry

    def purge(self) -> None:
        self.path.unlink(missing_ok=True)

import json
import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from . import config

logger = logging.getLogger("mangrove_admin.session")

USER_KEY = "mangrove_admin_user"
TOKEN_KEY = "mangrove_session_token"


class CorruptSession(ValueError):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or epoch milliseconds into an aware UTC datetime."""
    if isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"not a timestamp: {value!r}")
    moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


# --- Storage Backends ---

class MemoryStorage:
    """Key/value slots that live as long as the process (one console tab)."""

    def __init__(self):
        self._slots: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._slots.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._slots[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._slots.pop(key, None)


class JsonFileStorage:
    """Key/value slots kept in a single JSON document on disk.

    An unreadable or corrupt document reads as empty; the next write replaces it.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                slots = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Session file {self.path} unreadable, treating as empty: {e}")
            return {}
        if not isinstance(slots, dict):
            logger.warning(f"Session file {self.path} is not a JSON object, treating as empty")
            return {}
        return slots

    def _write(self, slots: Dict[str, str]) -> None:
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(slots, f)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            slots = self._read()
            slots[key] = value
            self._write(slots)

    def remove(self, key: str) -> None:
        with self._lock:
            slots = self._read()
            if key in slots:
                del slots[key]
                self._write(slots)


class ScopedStorage:
    """One client's view of a shared storage; every key is prefixed with the scope."""

    def __init__(self, storage, scope: str):
        self.storage = storage
        self.scope = scope

    def _key(self, key: str) -> str:
        return f"{self.scope}:{key}"

    def get(self, key: str) -> Optional[str]:
        return self.storage.get(self._key(key))

    def set(self, key: str, value: str) -> None:
        self.storage.set(self._key(key), value)

    def remove(self, key: str) -> None:
        self.storage.remove(self._key(key))


# --- Session Store ---

class SessionStore:
    """Bearer token plus cached operator profile, with a fixed validity window.

    Only the login timestamp gates expiry; activity updates never extend it.
    Corrupt stored state is treated as "no session" and wiped.
    """

    def __init__(self, storage=None, max_age: Optional[timedelta] = None,
                 now: Callable[[], datetime] = utcnow):
        self.storage = storage if storage is not None else MemoryStorage()
        self.max_age = max_age if max_age is not None else timedelta(hours=config.SESSION_MAX_AGE_HOURS)
        self.now = now

    def _load_profile(self) -> Optional[Dict[str, Any]]:
        raw = self.storage.get(USER_KEY)
        if raw is None:
            return None
        try:
            profile = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CorruptSession(f"stored profile is not JSON: {e}") from e
        if not isinstance(profile, dict):
            raise CorruptSession("stored profile is not an object")
        return profile

    def _store_profile(self, profile: Dict[str, Any]) -> None:
        self.storage.set(USER_KEY, json.dumps(profile))

    def is_valid(self) -> bool:
        try:
            profile = self._load_profile()
            if profile is None:
                return False
            login_time = profile.get("loginTime")
            if not login_time:
                return True
            try:
                age = self.now() - parse_timestamp(login_time)
            except (ValueError, TypeError, OverflowError, OSError) as e:
                raise CorruptSession(f"unparseable loginTime {login_time!r}") from e
        except CorruptSession as e:
            logger.error(f"Error validating session: {e}")
            self.clear()
            return False

        if age > self.max_age:
            logger.warning("Session expired due to age")
            self.clear()
            return False
        return True

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        try:
            return self._load_profile()
        except CorruptSession as e:
            logger.error(f"Error parsing user session: {e}")
            self.clear()
            return None

    def get_token(self) -> Optional[str]:
        token = self.storage.get(TOKEN_KEY)
        return token or None

    def save_token(self, token: str) -> None:
        self.storage.set(TOKEN_KEY, token)
        logger.info(f"Session token stored: {token[:4]}****")

    def save(self, profile: Dict[str, Any], token: Optional[str] = None) -> Dict[str, Any]:
        stored = dict(profile)
        if not stored.get("loginTime"):
            stored["loginTime"] = format_timestamp(self.now())
        self._store_profile(stored)
        if token:
            self.save_token(token)
        return stored

    def touch(self) -> bool:
        profile = self.get_current_user()
        if profile is None:
            return False
        profile["lastActivity"] = format_timestamp(self.now())
        self._store_profile(profile)
        logger.debug(f"Session activity updated: {profile['lastActivity']}")
        return True

    def clear(self) -> None:
        self.storage.remove(USER_KEY)
        self.storage.remove(TOKEN_KEY)
        logger.info("Session cleared")


def build_storage():
    if config.SESSION_FILE:
        return JsonFileStorage(config.SESSION_FILE)
    return MemoryStorage()

def build_session_store(storage=None, scope: Optional[str] = None) -> SessionStore:
    storage = storage if storage is not None else build_storage()
    if scope:
        storage = ScopedStorage(storage, scope)
    return SessionStore(storage)

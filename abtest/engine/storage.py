"""Client-side cache tiers for assignments.

Two redundant tiers hold only the variant name: a cookie named by the raw
experiment id (30 day expiry, path ``/``) and a durable key-value entry keyed
``exp-<id>`` with no expiry.
"""
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from http.cookies import SimpleCookie
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Union

from .errors import CacheError

COOKIE_TTL = timedelta(days=30)
COOKIE_PATH = "/"
DURABLE_KEY_PREFIX = "exp-"

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cookie_name(experiment_id: str) -> str:
    return experiment_id


def durable_key(experiment_id: str) -> str:
    return f"{DURABLE_KEY_PREFIX}{experiment_id}"


class CookieStore(Protocol):
    def get(self, name: str) -> Optional[str]: ...

    def set(
        self, name: str, value: str, max_age: timedelta = COOKIE_TTL, path: str = COOKIE_PATH
    ) -> None: ...


class DurableStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


@dataclass
class StoredCookie:
    value: str
    expires: datetime
    path: str = COOKIE_PATH


class MemoryCookieStore:
    """Cookie jar for one visitor, with expiry checked against ``clock``.

    Server-side callers can seed it from an incoming ``Cookie`` header and
    emit ``Set-Cookie`` headers for whatever the engine wrote.
    """

    def __init__(self, clock: Clock = _utcnow):
        self._clock = clock
        self._cookies: Dict[str, StoredCookie] = {}
        self._dirty: List[str] = []

    @classmethod
    def from_header(cls, header: str, clock: Clock = _utcnow) -> "MemoryCookieStore":
        store = cls(clock=clock)
        parsed = SimpleCookie()
        parsed.load(header)
        expires = clock() + COOKIE_TTL
        for name, morsel in parsed.items():
            store._cookies[name] = StoredCookie(value=morsel.value, expires=expires)
        return store

    def get(self, name: str) -> Optional[str]:
        cookie = self._cookies.get(name)
        if cookie is None:
            return None
        if cookie.expires <= self._clock():
            del self._cookies[name]
            return None
        return cookie.value or None

    def set(
        self, name: str, value: str, max_age: timedelta = COOKIE_TTL, path: str = COOKIE_PATH
    ) -> None:
        self._cookies[name] = StoredCookie(
            value=value, expires=self._clock() + max_age, path=path
        )
        if name not in self._dirty:
            self._dirty.append(name)

    def set_cookie_headers(self) -> List[str]:
        """``Set-Cookie`` header values for every cookie written so far."""
        headers = []
        for name in self._dirty:
            cookie = self._cookies.get(name)
            if cookie is None:
                continue
            jar = SimpleCookie()
            jar[name] = cookie.value
            jar[name]["path"] = cookie.path
            jar[name]["expires"] = cookie.expires.strftime("%a, %d %b %Y %H:%M:%S GMT")
            headers.append(jar[name].OutputString())
        return headers


class MemoryDurableStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key) or None

    def set(self, key: str, value: str) -> None:
        self._items[key] = value


class JsonFileStore:
    """Durable store backed by a JSON object on disk, rewritten on each set."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                items = json.load(fh)
        except (OSError, ValueError) as e:
            raise CacheError(f"Cannot read assignment cache {self.path}: {e}") from e
        if not isinstance(items, dict):
            raise CacheError(f"Assignment cache {self.path} does not hold a JSON object")
        return items

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key) or None

    def set(self, key: str, value: str) -> None:
        items = self._load()
        items[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", encoding="utf-8") as fh:
                json.dump(items, fh, indent=2, sort_keys=True)
        except OSError as e:
            raise CacheError(f"Cannot write assignment cache {self.path}: {e}") from e


class ClientCache:
    """Both cache tiers for one visitor, addressed by experiment id."""

    def __init__(
        self,
        cookies: Optional[CookieStore] = None,
        durable: Optional[DurableStore] = None,
    ):
        self.cookies = cookies if cookies is not None else MemoryCookieStore()
        self.durable = durable if durable is not None else MemoryDurableStore()

    @staticmethod
    def _call(tier: str, operation: Callable, *args):
        # Stores are pluggable; whatever they raise surfaces as CacheError
        try:
            return operation(*args)
        except CacheError:
            raise
        except Exception as e:
            raise CacheError(f"{tier} store failed: {type(e).__name__}: {e}") from e

    def read_cookie(self, experiment_id: str) -> Optional[str]:
        return self._call("cookie", self.cookies.get, cookie_name(experiment_id))

    def read_durable(self, experiment_id: str) -> Optional[str]:
        return self._call("durable", self.durable.get, durable_key(experiment_id))

    def remember(self, experiment_id: str, variant: str) -> None:
        self._call("cookie", self.cookies.set, cookie_name(experiment_id), variant)
        self._call("durable", self.durable.set, durable_key(experiment_id), variant)

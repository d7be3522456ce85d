from __future__ import annotations

import json
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from points_derby.engine.data_models import RaceState
from points_derby.errors import NotFound, StorageFailure


def now_ms() -> int:
    return int(time.time() * 1000)


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def race_key(race_id: str) -> str:
    return f"race:{race_id}"


def decode_race_state(payload: Any) -> RaceState:
    """Parses a stored snapshot; anything unreadable is a storage fault."""
    try:
        if isinstance(payload, (str, bytes)):
            payload = json.loads(payload)
        return RaceState.from_dict(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise StorageFailure(f"Stored race state is malformed: {e}") from e


class StoreSession(ABC):
    """
    One serialized unit of work against the balance store. Writes become
    visible together when the owning ``session()`` block exits cleanly.
    """

    @abstractmethod
    def get_balance(self, user_id: str) -> int:
        ...

    @abstractmethod
    def set_balance(self, user_id: str, points: int) -> None:
        ...

    @abstractmethod
    def create_player(self, user_id: str, points: int) -> bool:
        """Creates the player if missing. Returns True when a row was added."""
        ...

    @abstractmethod
    def get_race_state(self, race_id: str) -> Optional[RaceState]:
        ...

    @abstractmethod
    def put_race_state(self, state: RaceState, ttl_seconds: int) -> None:
        ...


class BalanceStore(ABC):
    @abstractmethod
    def session(self, *lock_keys: str):
        """Context manager holding every lock in ``lock_keys`` for its duration."""
        ...

    @abstractmethod
    def purge_expired_races(self) -> int:
        """Drops race snapshots past their retention window. Returns how many went."""
        ...


class _MemorySession(StoreSession):
    def __init__(self, store: "MemoryStore", held: Tuple[str, ...]):
        self._store = store
        self._held = set(held)
        self._balances: Dict[str, int] = {}
        self._races: Dict[str, Tuple[str, int]] = {}

    def _require_lock(self, key: str) -> None:
        if key not in self._held:
            raise RuntimeError(f"Write to '{key}' outside its lock")

    def get_balance(self, user_id: str) -> int:
        if user_id in self._balances:
            return self._balances[user_id]
        with self._store._data_guard:
            if user_id not in self._store._balances:
                raise NotFound(f"Unknown user '{user_id}'.")
            return self._store._balances[user_id]

    def set_balance(self, user_id: str, points: int) -> None:
        self._require_lock(user_key(user_id))
        self.get_balance(user_id)
        self._balances[user_id] = int(points)

    def create_player(self, user_id: str, points: int) -> bool:
        self._require_lock(user_key(user_id))
        try:
            self.get_balance(user_id)
            return False
        except NotFound:
            self._balances[user_id] = int(points)
            return True

    def get_race_state(self, race_id: str) -> Optional[RaceState]:
        row = self._races.get(race_id)
        if row is None:
            with self._store._data_guard:
                row = self._store._races.get(race_id)
        if row is None:
            return None
        payload, expires_at = row
        if expires_at <= self._store._clock():
            return None
        return decode_race_state(payload)

    def put_race_state(self, state: RaceState, ttl_seconds: int) -> None:
        self._require_lock(race_key(state.race_id))
        payload = json.dumps(state.to_dict())
        self._races[state.race_id] = (payload, self._store._clock() + ttl_seconds * 1000)

    def _commit(self) -> None:
        with self._store._data_guard:
            self._store._balances.update(self._balances)
            self._store._races.update(self._races)


class _KeyLock:
    """A per-key lock plus the number of sessions holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class MemoryStore(BalanceStore):
    """
    In-process store with per-key locks. Snapshots are kept as JSON strings so
    every read goes through the same decode path as the database adapter.

    A key's lock lives only while some session holds or waits on it, so the
    lock table stays as small as the set of keys in use.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or now_ms
        self._balances: Dict[str, int] = {}
        self._races: Dict[str, Tuple[str, int]] = {}
        self._data_guard = threading.Lock()
        self._locks: Dict[str, _KeyLock] = {}
        self._locks_guard = threading.Lock()

    def _checkout(self, key: str) -> threading.Lock:
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
            return entry.lock

    def _checkin(self, key: str) -> None:
        with self._locks_guard:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def session(self, *lock_keys: str) -> Iterator[StoreSession]:
        keys = tuple(sorted(set(lock_keys)))
        locks = [self._checkout(key) for key in keys]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            session = _MemorySession(self, keys)
            yield session
            session._commit()
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in keys:
                self._checkin(key)

    def purge_expired_races(self) -> int:
        cutoff = self._clock()
        with self._data_guard:
            expired = [race_id for race_id, (_, expires_at) in self._races.items() if expires_at <= cutoff]
            for race_id in expired:
                del self._races[race_id]
        return len(expired)

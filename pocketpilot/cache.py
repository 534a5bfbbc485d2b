# pocketpilot/cache.py
# Process-local TTL cache. Survives between requests of one worker, nothing more.
from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

from pocketpilot.settings import DEFAULT_TTL


class TTLCache:
    def __init__(self, max_entries: int = 100, default_ttl: int = DEFAULT_TTL,
                 clock: Callable[[], float] = time.time):
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._data: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                self.misses += 1
                return None
            value, expires_at = entry
            if self._clock() > expires_at:
                del self._data[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        with self._lock:
            if key in self._data:
                del self._data[key]
            elif len(self._data) >= self.max_entries:
                # oldest insert goes first
                self._data.popitem(last=False)
            ttl = self.default_ttl if ttl is None else ttl
            self._data[key] = (value, self._clock() + ttl)

    def get_or_set(self, key: str, compute: Callable[[], Any], ttl: Optional[int] = None) -> Tuple[Any, bool]:
        cached = self.get(key)
        if cached is not None:
            return cached, True
        value = compute()
        if value is not None:
            self.set(key, value, ttl)
        return value, False

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def clear_expired(self) -> int:
        now = self._clock()
        with self._lock:
            dead = [k for k, (_, exp) in self._data.items() if now > exp]
            for k in dead:
                del self._data[k]
        return len(dead)

    def stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": len(self._data),
            "hit_rate": (self.hits / total) if total else 0.0,
        }


# ---------- key helpers ----------
def user_key(prefix: str, user_id: str, *parts: str) -> str:
    return ":".join([prefix, str(user_id), *[str(p) for p in parts]])


def global_key(prefix: str, *parts: str) -> str:
    return ":".join(["global", prefix, *[str(p) for p in parts]])


def hash_key(prefix: str, obj: Dict[str, Any]) -> str:
    raw = json.dumps(obj, sort_keys=True, default=str, separators=(",", ":"))
    return f"{prefix}:{hashlib.sha1(raw.encode('utf-8')).hexdigest()[:12]}"

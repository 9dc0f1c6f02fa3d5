import random
import threading
import time
from typing import Optional, Set


_lock = threading.Lock()
_last_ms = 0


def _observed_ms() -> int:
    # Never step backwards even if the wall clock does.
    global _last_ms
    with _lock:
        _last_ms = max(_last_ms, int(time.time() * 1000))
        return _last_ms


def new_id(prefix: str) -> str:
    """Mint an id like ``link-1718000000000-4821``.

    Collisions are unlikely but possible, so callers check against the ids
    already in use (see ``allocate_unique_id``).
    """
    return f"{prefix}-{_observed_ms()}-{random.randint(0, 9999)}"


def allocate_unique_id(existing: Optional[object], prefix: str, used: Set[str]) -> str:
    """Keep ``existing`` (trimmed) if it is a usable, unclaimed id; otherwise mint one.

    The returned id is registered in ``used``.
    """
    candidate = existing.strip() if isinstance(existing, str) else ""
    if candidate and candidate not in used:
        used.add(candidate)
        return candidate

    while True:
        fresh = new_id(prefix)
        if fresh not in used:
            used.add(fresh)
            return fresh

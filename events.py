import logging
import threading
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict], None]

_lock = threading.Lock()
_listeners: List[Listener] = []
_version = 0


def subscribe(listener: Listener) -> Callable[[], None]:
    with _lock:
        _listeners.append(listener)

    def unsubscribe():
        with _lock:
            if listener in _listeners:
                _listeners.remove(listener)

    return unsubscribe


def listing_version() -> int:
    return _version


def invalidate_listing(reason: str, **details) -> int:
    global _version
    with _lock:
        _version += 1
        version = _version
        listeners = list(_listeners)
    logger.info("listing invalidated (v%s): %s %s", version, reason, details)
    payload = {"version": version, **details}
    for listener in listeners:
        try:
            listener(reason, payload)
        except Exception:
            logger.exception("listing listener failed for %s", reason)
    return version

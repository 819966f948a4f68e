"""
Thread-safe rate-limited logging.

License scans can hit the same bad record on every refresh and the node
heartbeat sees the same offline node every tick; this keeps those warnings
visible without flooding the log.
"""
import logging
import threading
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

_seen_messages: TTLCache = TTLCache(maxsize=512, ttl=300)
_seen_messages_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    key: Optional[str] = None,
    logger_instance: Optional[logging.Logger] = None,
) -> bool:
    """
    Log a message at most once per cache TTL.

    Args:
        message: Message to log
        level: Log level name (debug, info, warning, error, critical)
        key: Deduplication key; defaults to level plus message
        logger_instance: Logger to use (defaults to module logger)

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    cache_key = key or f"{level}:{message}"

    with _seen_messages_lock:
        if cache_key in _seen_messages:
            return False
        _seen_messages[cache_key] = True

    log_method(message)
    return True


def reset_rate_limits() -> None:
    """Forget all suppressed messages."""
    with _seen_messages_lock:
        _seen_messages.clear()

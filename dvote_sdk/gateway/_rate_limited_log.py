"""
Thread-safe rate-limited logging.

Discovery checks the same dead nodes round after round; this keeps one
warning per node and message within the TTL window.
"""
import logging
import threading
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# Maximum of 256 entries, 10 minutes TTL
_log_cache: TTLCache = TTLCache(maxsize=256, ttl=600)
_log_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    logger_instance: Optional[logging.Logger] = None,
    key: Optional[str] = None,
) -> bool:
    """
    Log a message unless the same one was logged recently.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        logger_instance: Logger to use (defaults to module logger)
        key: Deduplication key (defaults to level and message)

    Returns:
        True if the message was emitted
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)

    cache_key = key or f"{level}:{message}"
    with _log_cache_lock:
        if cache_key in _log_cache:
            return False
        _log_cache[cache_key] = True

    log_method(message)
    return True


def reset_rate_limited_log() -> None:
    """Forget every message logged so far."""
    with _log_cache_lock:
        _log_cache.clear()

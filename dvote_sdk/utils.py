"""
Utility functions for the DVote SDK: randomness and timeouts.
"""
import asyncio
import logging
import random
import secrets
import time
from typing import Awaitable, List, Optional, Sequence, TypeVar

from eth_utils import keccak

from .gateway.exceptions import GatewayTimeoutError

T = TypeVar("T")

logger = logging.getLogger(__name__)

# OS entropy backed generator
_system_random = random.SystemRandom()


def get_bytes(count: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Args:
        count: Number of bytes

    Returns:
        Random bytes
    """
    if count < 0:
        raise ValueError("The byte count must be positive")
    return secrets.token_bytes(count)


def get_hex() -> str:
    """Keccak256 of 32 random bytes, as a 0x-prefixed hex string."""
    return "0x" + keccak(get_bytes(32)).hex()


def get_big_int(max_value: int) -> int:
    """Random integer in the range [0, max_value)."""
    if max_value <= 0:
        raise ValueError("max_value must be greater than zero")
    return _system_random.randrange(max_value)


def random_index(length: int) -> int:
    """Uniformly random index into a sequence of the given length."""
    if length <= 0:
        raise ValueError("Cannot pick an index from an empty sequence")
    return _system_random.randrange(length)


def shuffle(items: Sequence[T]) -> List[T]:
    """
    Uniform random permutation of the given items.

    The input is left untouched; a new list is returned.
    """
    result = list(items)
    _system_random.shuffle(result)
    return result


async def with_timeout(awaitable: Awaitable[T], timeout_ms: int, message: Optional[str] = None) -> T:
    """
    Await something with a deadline.

    Args:
        awaitable: Coroutine or future to wait for
        timeout_ms: Deadline in milliseconds
        message: Message of the timeout error (defaults to "Time out")

    Returns:
        The result of the awaitable

    Raises:
        GatewayTimeoutError: If the deadline passes first
        ValueError: If the timeout is negative
    """
    if timeout_ms is None or timeout_ms < 0:
        # Never awaited otherwise
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise ValueError("Invalid timeout")

    try:
        return await asyncio.wait_for(awaitable, timeout_ms / 1000)
    except asyncio.TimeoutError:
        raise GatewayTimeoutError(message or "Time out") from None


def elapsed_ms(start: float) -> int:
    """Milliseconds since a time.monotonic() reading."""
    return round((time.monotonic() - start) * 1000)

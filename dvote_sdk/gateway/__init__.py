"""
Gateway module for the DVote SDK.

This module provides the clients of the two sides of a gateway (DVote and
Web3), the bootnode resolver and the discovery of working gateways.
Submodules are imported on demand; only the exceptions load eagerly.
"""
import logging
import threading
from typing import TYPE_CHECKING, Optional

from .exceptions import (
    DiscoveryErrorKind,
    GatewayDiscoveryError,
    GatewayDiscoveryValidationError,
    GatewayError,
    GatewayTimeoutError,
    ValidationErrorKind,
)

if TYPE_CHECKING:
    from .transport import GatewayTransport

__all__ = [
    "DiscoveryErrorKind",
    "GatewayDiscoveryError",
    "GatewayDiscoveryValidationError",
    "GatewayError",
    "GatewayTimeoutError",
    "ValidationErrorKind",
    "get_transport",
    "set_transport",
]

logger = logging.getLogger(__name__)

# Process-wide default transport, guarded for thread safety
_default_transport: Optional["GatewayTransport"] = None
_transport_lock = threading.RLock()


def get_transport() -> "GatewayTransport":
    """
    Get or create the transport shared by clients built without one.

    Returns:
        GatewayTransport instance
    """
    global _default_transport
    with _transport_lock:
        if _default_transport is None:
            from .transport import HttpTransport
            _default_transport = HttpTransport()
            logger.debug("Created default HTTP transport")
        return _default_transport


def set_transport(transport: Optional["GatewayTransport"]) -> None:
    """Replace the shared transport (None resets to the HTTP default)."""
    global _default_transport
    with _transport_lock:
        _default_transport = transport

"""
DVote SDK - discovery of and signed requests to decentralized voting gateways.
"""
from .exceptions import DVoteError, SigningUnavailableError
from .gateway.bootnode import digest, digest_network, get_gateways_from_uri
from .gateway.chain import Web3ChainRPC, Web3Gateway
from .gateway.discovery import DiscoveryParameters, GatewayDiscovery, discover_gateways
from .gateway.dvote import DVoteGateway
from .gateway.exceptions import (
    BadSignatureError,
    BootnodeError,
    DiscoveryErrorKind,
    GatewayDiscoveryError,
    GatewayDiscoveryValidationError,
    GatewayError,
    GatewayRequestFailedError,
    GatewayTimeoutError,
    RequestIdMismatchError,
    ValidationErrorKind,
)
from .gateway.pair import GatewayPair
from .models import BootnodeDocument
from .signing import LocalSigner, MessageSigner, canonicalize, sign, verify
from .version import __version__

__all__ = [
    "BadSignatureError",
    "BootnodeDocument",
    "BootnodeError",
    "DVoteError",
    "DVoteGateway",
    "DiscoveryErrorKind",
    "DiscoveryParameters",
    "GatewayDiscovery",
    "GatewayDiscoveryError",
    "GatewayDiscoveryValidationError",
    "GatewayError",
    "GatewayPair",
    "GatewayRequestFailedError",
    "GatewayTimeoutError",
    "LocalSigner",
    "MessageSigner",
    "RequestIdMismatchError",
    "SigningUnavailableError",
    "ValidationErrorKind",
    "Web3ChainRPC",
    "Web3Gateway",
    "canonicalize",
    "digest",
    "digest_network",
    "discover_gateways",
    "get_gateways_from_uri",
    "sign",
    "verify",
    "__version__",
]

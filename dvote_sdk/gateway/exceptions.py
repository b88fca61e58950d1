"""
Exceptions for the Gateway module.
"""
from enum import Enum
from typing import Optional, Union

from ..exceptions import DVoteError


class DiscoveryErrorKind(str, Enum):
    """
    Reasons a discovery run can fail.

    The values are the user-facing messages.
    """
    BOOTNODE_FETCH_ERROR = "Could not fetch the bootnode details"
    BOOTNODE_TIMEOUT_ERROR = "Timeout fetching the bootnode details"
    BOOTNODE_NOT_ENOUGH_GATEWAYS = "Not enough gateways found in the bootnode"
    NO_CANDIDATES_READY = "None of the candidates is ready"
    NO_WORKING_GATEWAYS = "No working gateways found"


class ValidationErrorKind(str, Enum):
    """Invalid discovery parameters, checked before any network call."""
    INVALID_PARAMETERS = ""
    INVALID_NETWORK_ID = "Invalid network ID"
    INVALID_ENVIRONMENT = "Invalid environment"
    INVALID_BOOTNODE_URI = "Invalid bootnode URI"
    INVALID_NUMBER_GATEWAYS = "Invalid number of gateways"
    INVALID_TIMEOUT = "Invalid timeout"


class GatewayError(DVoteError):
    """Base exception for Gateway-related errors."""
    pass


class GatewayConnectionError(GatewayError):
    """Raised when connection to the Gateway service fails."""
    pass


class GatewayTimeoutError(GatewayError):
    """Raised when a Gateway operation times out."""

    def __init__(self, message: str = "Time out"):
        super().__init__(message)


class GatewayNotReadyError(GatewayError):
    """Raised when a request is sent through a client without endpoint data."""

    def __init__(self, message: str = "Not initialized"):
        super().__init__(message)


class UnsupportedMethodError(GatewayError):
    """Raised when the Gateway does not expose the API of a method."""

    def __init__(self, method: str, message: Optional[str] = None):
        self.method = method
        super().__init__(
            message or f"The method is not available in the Gateway's supported API's ({method})"
        )


class GatewayResponseError(GatewayError):
    """Raised when the Gateway service returns an unusable response."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.error_code = error_code
        super().__init__(message)


class InvalidResponseError(GatewayResponseError):
    """The response is not JSON or lacks the `response` field."""

    def __init__(self, message: str = "Invalid response message"):
        super().__init__(message, error_code="INVALID_RESPONSE")


class RequestIdMismatchError(GatewayResponseError):
    """The echoed request id differs from the one that was sent."""

    def __init__(self, expected: str, received: Optional[str]):
        self.expected = expected
        self.received = received
        super().__init__(
            "The signed request ID does not match the expected one",
            error_code="REQUEST_ID_MISMATCH",
        )


class BadSignatureError(GatewayResponseError):
    """The response signature does not match the Gateway public key."""

    def __init__(self, message: str = "The signature of the response does not match the expected one"):
        super().__init__(message, error_code="BAD_SIGNATURE")


class GatewayRequestFailedError(GatewayResponseError):
    """The Gateway handled the request and answered `ok: false`."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or "There was an error while handling the request at the gateway",
            error_code="REQUEST_FAILED",
        )


class ChainGatewayError(GatewayError):
    """Base exception for the Web3 side of a gateway."""
    pass


class ChainSyncingError(ChainGatewayError):
    """The Web3 node is still syncing blocks."""

    def __init__(self, message: str = "The Web3 Gateway is syncing"):
        super().__init__(message)


class EnsResolutionError(ChainGatewayError):
    """A contract address could not be resolved through ENS."""
    pass


class BootnodeError(DVoteError):
    """Raised when the bootnode data cannot be fetched or parsed."""
    pass


class GatewayDiscoveryError(DVoteError):
    """
    Raised when discovery cannot produce a working gateway list.

    Attributes:
        kind: The reason callers should branch on. A DiscoveryErrorKind,
            or a ValidationErrorKind on GatewayDiscoveryValidationError
    """
    kind: Union[DiscoveryErrorKind, ValidationErrorKind]

    def __init__(self, kind: DiscoveryErrorKind = DiscoveryErrorKind.NO_WORKING_GATEWAYS):
        self.kind = kind
        super().__init__(kind.value)


class GatewayDiscoveryValidationError(GatewayDiscoveryError):
    """Raised for invalid discovery parameters; `kind` is a ValidationErrorKind."""
    kind: ValidationErrorKind

    def __init__(self, kind: ValidationErrorKind = ValidationErrorKind.INVALID_PARAMETERS):
        self.kind = kind
        message = "Invalid parameters: " + kind.value if kind.value else "Invalid parameters"
        DVoteError.__init__(self, message)

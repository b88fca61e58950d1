"""
Base exceptions for the DVote SDK.
"""


class DVoteError(Exception):
    """Base exception for every error raised by the SDK."""
    pass


class SigningUnavailableError(DVoteError):
    """Raised when a payload must be signed but no signer is configured."""
    pass

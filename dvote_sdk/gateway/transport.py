"""
Transport layer for DVote Gateways.

This module provides the abstraction used to move envelope bytes to a
Gateway and to fetch bootnode documents, plus the default HTTP
implementation on top of httpx.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlsplit

import httpx

from ..config import default_request_timeout_ms
from .exceptions import GatewayConnectionError, GatewayTimeoutError

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ("http", "https")


class GatewayTransport(ABC):
    """
    Abstract base class for Gateway transport implementations.

    Implementations return the literal response bytes; signature checks
    depend on them not being re-encoded.
    """

    @abstractmethod
    async def post(self, uri: str, payload: bytes, timeout_ms: Optional[int] = None) -> bytes:
        """
        Send a request envelope to a Gateway.

        Args:
            uri: Endpoint of the Gateway
            payload: Serialized envelope
            timeout_ms: Deadline of the call

        Returns:
            The raw response body

        Raises:
            GatewayTimeoutError: If the deadline passes
            GatewayConnectionError: For any other network failure
        """
        pass

    @abstractmethod
    async def fetch_string(self, uri: str, timeout_ms: Optional[int] = None) -> str:
        """
        Fetch a text document (used for bootnode data).

        Raises:
            GatewayTimeoutError: If the deadline passes
            GatewayConnectionError: For any other network failure
            ValueError: If the URI cannot be handled by this transport
        """
        pass

    async def aclose(self) -> None:
        """Close any open connections or resources."""
        pass


def _validate_uri(uri: str) -> None:
    if not uri or not isinstance(uri, str):
        raise ValueError("Invalid URI")
    scheme = urlsplit(uri).scheme.lower()
    if scheme not in SUPPORTED_SCHEMES:
        raise ValueError(f"Unsupported URI scheme '{scheme}' in {uri}")


def _timeout(timeout_ms: Optional[int]) -> httpx.Timeout:
    ms = timeout_ms if timeout_ms is not None else default_request_timeout_ms()
    return httpx.Timeout(ms / 1000)


class HttpTransport(GatewayTransport):
    """
    HTTP(S) transport backed by a shared ``httpx.AsyncClient``.

    Args:
        client: Client to use (a private one is created on demand otherwise)
        verify_ssl: Whether to verify TLS certificates of the private client
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, verify_ssl: bool = True):
        self._client = client
        self._owns_client = client is None
        self.verify_ssl = verify_ssl

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            if self._client is not None:
                logger.debug("HTTP client was closed, creating a new one")
            self._client = httpx.AsyncClient(verify=self.verify_ssl)
            self._owns_client = True
        return self._client

    async def post(self, uri: str, payload: bytes, timeout_ms: Optional[int] = None) -> bytes:
        _validate_uri(uri)
        try:
            response = await self.client.post(
                uri,
                content=payload,
                headers={"Content-Type": "application/json"},
                timeout=_timeout(timeout_ms),
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            raise GatewayTimeoutError() from None
        except httpx.HTTPStatusError as e:
            raise GatewayConnectionError(
                f"Gateway {uri} replied with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise GatewayConnectionError(f"Could not reach {uri}: {e}") from e
        return response.content

    async def fetch_string(self, uri: str, timeout_ms: Optional[int] = None) -> str:
        _validate_uri(uri)
        try:
            response = await self.client.get(uri, timeout=_timeout(timeout_ms))
            response.raise_for_status()
        except httpx.TimeoutException:
            raise GatewayTimeoutError() from None
        except httpx.HTTPStatusError as e:
            raise GatewayConnectionError(
                f"{uri} replied with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise GatewayConnectionError(f"Could not fetch {uri}: {e}") from e
        return response.text

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("HTTP client closed")

"""
Bootnode resolution: fetch the document listing candidate gateways and turn
it into gateway clients.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from pydantic import ValidationError

from ..config import DEFAULT_ENVIRONMENT
from ..exceptions import DVoteError
from ..models import BootnodeDocument
from .chain import ChainRPCFactory, Web3Gateway
from .dvote import DVoteGateway
from .exceptions import BootnodeError
from .transport import GatewayTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")

BootnodeSource = Union[str, Sequence[str], BootnodeDocument, Mapping[str, Any]]


@dataclass(frozen=True)
class NormalizedSource:
    """A bootnode source: either mirror URIs to fetch or a document at hand"""
    uris: Tuple[str, ...] = ()
    document: Optional[BootnodeDocument] = None


def parse_document(data: Union[str, bytes, Mapping[str, Any]]) -> BootnodeDocument:
    """
    Parse bootnode data.

    Raises:
        BootnodeError: If the data does not have the bootnode shape
    """
    try:
        if isinstance(data, (str, bytes)):
            return BootnodeDocument.model_validate_json(data)
        return BootnodeDocument.model_validate(dict(data))
    except (ValidationError, ValueError, TypeError) as e:
        raise BootnodeError(f"Invalid bootnode data: {e}") from e


def normalize_sources(source: Union[BootnodeSource, NormalizedSource]) -> NormalizedSource:
    """
    Bring the accepted source shapes (one URI, a list of URIs, a parsed
    document or a plain mapping) to a NormalizedSource.

    Raises:
        ValueError: If the source is empty or of an unsupported type
        BootnodeError: If a mapping does not have the bootnode shape
    """
    if isinstance(source, NormalizedSource):
        return source
    if isinstance(source, BootnodeDocument):
        return NormalizedSource(document=source)
    if isinstance(source, str):
        if not source.strip():
            raise ValueError("Empty bootnode URI")
        return NormalizedSource(uris=(source,))
    if isinstance(source, Mapping):
        return NormalizedSource(document=parse_document(source))
    if isinstance(source, (list, tuple)):
        if not source or not all(isinstance(uri, str) and uri.strip() for uri in source):
            raise ValueError("Bootnode URIs must be a non-empty list of strings")
        return NormalizedSource(uris=tuple(source))
    raise ValueError(f"Unsupported bootnode source: {type(source).__name__}")


async def _fetch_document(transport: GatewayTransport, uri: str, timeout_ms: Optional[int]) -> BootnodeDocument:
    try:
        text = await transport.fetch_string(uri, timeout_ms)
    except (DVoteError, ValueError) as e:
        raise BootnodeError(f"Could not fetch the bootnode data from {uri}: {e}") from e
    return parse_document(text)


async def get_gateways_from_uri(
    source: Union[BootnodeSource, NormalizedSource],
    transport: Optional[GatewayTransport] = None,
    timeout_ms: Optional[int] = None,
) -> BootnodeDocument:
    """
    Fetch and parse the bootnode document.

    With several mirror URIs they are fetched concurrently and the first one
    that succeeds wins; the remaining fetches are cancelled.

    Raises:
        BootnodeError: If no source yields a valid document
    """
    try:
        normalized = normalize_sources(source)
    except ValueError as e:
        raise BootnodeError(str(e)) from e
    if normalized.document is not None:
        return normalized.document

    if transport is None:
        from . import get_transport
        transport = get_transport()

    if len(normalized.uris) == 1:
        return await _fetch_document(transport, normalized.uris[0], timeout_ms)

    tasks = [asyncio.ensure_future(_fetch_document(transport, uri, timeout_ms)) for uri in normalized.uris]
    errors: List[BootnodeError] = []
    try:
        for next_done in asyncio.as_completed(tasks):
            try:
                return await next_done
            except BootnodeError as e:
                logger.debug(f"Bootnode mirror failed: {e}")
                errors.append(e)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()

    raise BootnodeError(
        f"None of the {len(normalized.uris)} bootnode sources could be used: {errors[-1]}"
    )


def dedup_by_uri(items: Iterable[T]) -> List[T]:
    """Drop items whose `uri` was already seen, keeping the first occurrence."""
    seen = set()
    result = []
    for item in items:
        uri = item.uri  # type: ignore[attr-defined]
        if uri in seen:
            continue
        seen.add(uri)
        result.append(item)
    return result


def digest_network(
    document: BootnodeDocument,
    network_id: str,
    environment: str = DEFAULT_ENVIRONMENT,
    transport: Optional[GatewayTransport] = None,
    rpc_factory: Optional[ChainRPCFactory] = None,
) -> Tuple[List[DVoteGateway], List[Web3Gateway]]:
    """
    Clients for the candidates of one network, in document order.

    A network missing from the document gives two empty lists.
    """
    network = document.get_network(network_id)
    if network is None:
        return [], []

    dvote = [DVoteGateway.from_node_info(info, transport=transport) for info in network.dvote]
    web3 = [
        Web3Gateway.from_node_info(
            info, network_id=network_id, environment=environment, rpc_factory=rpc_factory
        )
        for info in network.web3
    ]
    return dvote, web3


def digest(
    document: BootnodeDocument,
    environment: str = DEFAULT_ENVIRONMENT,
    transport: Optional[GatewayTransport] = None,
    rpc_factory: Optional[ChainRPCFactory] = None,
) -> Dict[str, Tuple[List[DVoteGateway], List[Web3Gateway]]]:
    """digest_network() for every network of the document."""
    return {
        network_id: digest_network(document, network_id, environment, transport, rpc_factory)
        for network_id in document.networks()
    }

"""
Discovery of working gateways.

Starting from the bootnode document of a network, candidates are health
checked in small concurrent batches over rounds of growing timeouts until
enough DVote and Web3 nodes respond. The healthy nodes are ranked and
paired.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, fields
from typing import Any, Awaitable, List, Mapping, Optional, Sequence, Tuple, Union

from ..config import DEFAULT_ENVIRONMENT, ENVIRONMENTS, default_discovery_timeout_ms
from ..models import BootnodeDocument, NetworkBootnodes, is_retry_candidate
from ..utils import random_index, shuffle, with_timeout
from ._rate_limited_log import rate_limited_log
from .bootnode import (
    BootnodeSource,
    NormalizedSource,
    dedup_by_uri,
    digest_network,
    get_gateways_from_uri,
    normalize_sources,
)
from .chain import ChainRPCFactory, Web3Gateway
from .dvote import DVoteGateway
from .exceptions import (
    BootnodeError,
    DiscoveryErrorKind,
    GatewayDiscoveryError,
    GatewayDiscoveryValidationError,
    GatewayTimeoutError,
    ValidationErrorKind,
)
from .pair import GatewayPair
from .transport import GatewayTransport

logger = logging.getLogger(__name__)

# Candidates of each kind checked at the same time
PARALLEL_GATEWAY_TESTS = 2
DEFAULT_NUMBER_OF_GATEWAYS = 1
# Web3 nodes reporting fewer peers are discarded
MIN_WEB3_PEERS = 5
# Round timeouts, as multiples of the base timeout
TIMEOUT_MULTIPLIERS = (1, 2, 4, 16)


@dataclass
class DiscoveryParameters:
    """
    What to discover.

    Attributes:
        network_id: Network of the gateways (e.g. "xdai", "goerli")
        bootnodes_content_uri: Bootnode URI, list of mirror URIs, or the
            document itself
        environment: prod, stg or dev
        number_of_gateways: Minimum of working gateways of each kind
        timeout: Base round timeout in milliseconds (0 or None for the default)
        resolve_ens: Require Web3 nodes to resolve the entity resolver
        archive_ipns_id: Archive pointer stamped on the Web3 clients
    """
    network_id: str
    bootnodes_content_uri: BootnodeSource
    environment: str = DEFAULT_ENVIRONMENT
    number_of_gateways: Optional[int] = None
    timeout: Optional[int] = None
    resolve_ens: bool = False
    archive_ipns_id: Optional[str] = None


@dataclass(frozen=True)
class _DiscoveryRun:
    """Validated parameters of a single run"""
    network_id: str
    environment: str
    source: NormalizedSource
    min_gateways: int
    timeout_ms: int
    resolve_ens: bool
    archive_ipns_id: Optional[str]


_REQUIRED_FIELDS = ("network_id", "bootnodes_content_uri")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate(params: Union[DiscoveryParameters, Mapping[str, Any]]) -> _DiscoveryRun:
    if isinstance(params, Mapping):
        known = {f.name for f in fields(DiscoveryParameters)}
        if not set(params) <= known:
            raise GatewayDiscoveryValidationError(ValidationErrorKind.INVALID_PARAMETERS)
        # Missing required fields are reported by the per-field checks below
        params = DiscoveryParameters(**{**dict.fromkeys(_REQUIRED_FIELDS), **params})
    if not isinstance(params, DiscoveryParameters):
        raise GatewayDiscoveryValidationError(ValidationErrorKind.INVALID_PARAMETERS)

    if not params.network_id or not isinstance(params.network_id, str):
        raise GatewayDiscoveryValidationError(ValidationErrorKind.INVALID_NETWORK_ID)

    environment = params.environment if params.environment is not None else DEFAULT_ENVIRONMENT
    if environment not in ENVIRONMENTS:
        raise GatewayDiscoveryValidationError(ValidationErrorKind.INVALID_ENVIRONMENT)

    if not params.bootnodes_content_uri:
        raise GatewayDiscoveryValidationError(ValidationErrorKind.INVALID_BOOTNODE_URI)
    try:
        source = normalize_sources(params.bootnodes_content_uri)
    except (ValueError, BootnodeError):
        raise GatewayDiscoveryValidationError(ValidationErrorKind.INVALID_BOOTNODE_URI) from None

    min_gateways = params.number_of_gateways
    if min_gateways is None:
        min_gateways = DEFAULT_NUMBER_OF_GATEWAYS
    elif not _is_int(min_gateways) or min_gateways <= 0:
        raise GatewayDiscoveryValidationError(ValidationErrorKind.INVALID_NUMBER_GATEWAYS)

    timeout_ms = params.timeout
    if timeout_ms is not None and (not _is_int(timeout_ms) or timeout_ms < 0):
        raise GatewayDiscoveryValidationError(ValidationErrorKind.INVALID_TIMEOUT)
    if not timeout_ms:
        timeout_ms = default_discovery_timeout_ms()

    return _DiscoveryRun(
        network_id=params.network_id,
        environment=environment,
        source=source,
        min_gateways=min_gateways,
        timeout_ms=timeout_ms,
        resolve_ens=bool(params.resolve_ens),
        archive_ipns_id=params.archive_ipns_id,
    )


def most_frequent_block(nodes: Sequence[Web3Gateway]) -> Optional[int]:
    """
    Block number reported by most nodes.

    None when every node reports a different block. Ties go to the highest
    block.
    """
    blocks = [node.block_number for node in nodes if node.block_number is not None]
    counts = Counter(blocks)
    if len(counts) == len(nodes):
        return None
    block, _ = max(counts.items(), key=lambda item: (item[1], item[0]))
    return block


def rank_dvote(nodes: Sequence[DVoteGateway]) -> List[DVoteGateway]:
    return sorted(nodes, key=lambda node: -(node.weight or 0))


def rank_web3(nodes: Sequence[Web3Gateway]) -> List[Web3Gateway]:
    """Nodes agreeing on the most frequent block first, then by weight."""
    block = most_frequent_block(nodes)
    if block is None:
        return sorted(nodes, key=lambda node: -(node.weight or 0))
    return sorted(nodes, key=lambda node: (0 if node.block_number == block else 1, -(node.weight or 0)))


def build_pairs(dvote: Sequence[DVoteGateway], web3: Sequence[Web3Gateway]) -> List[GatewayPair]:
    """
    Pair the lists by index; the shorter one is completed with random picks.
    """
    if not dvote or not web3:
        return []
    pairs = []
    for i in range(max(len(dvote), len(web3))):
        dvote_node = dvote[i] if i < len(dvote) else dvote[random_index(len(dvote))]
        web3_node = web3[i] if i < len(web3) else web3[random_index(len(web3))]
        pairs.append(GatewayPair(dvote=dvote_node, web3=web3_node))
    return pairs


class GatewayDiscovery:
    """
    Finds working gateways of a network.

    Args:
        transport: Transport of the DVote clients and of the bootnode fetch
        parallel_tests: Candidates of each kind checked at the same time
        rpc_factory: Builds the chain RPC of each Web3 client
        logger: Logger (defaults to the module logger)
    """

    def __init__(
        self,
        transport: Optional[GatewayTransport] = None,
        parallel_tests: int = PARALLEL_GATEWAY_TESTS,
        rpc_factory: Optional[ChainRPCFactory] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if not _is_int(parallel_tests) or parallel_tests <= 0:
            raise ValueError("parallel_tests must be a positive integer")
        self.transport = transport
        self.parallel_tests = parallel_tests
        self.rpc_factory = rpc_factory
        self.logger = logger or logging.getLogger(__name__)

    def run(self, params: Union[DiscoveryParameters, Mapping[str, Any]]) -> Awaitable[List[GatewayPair]]:
        """
        Start a discovery run.

        The parameters are validated right away; the returned awaitable
        does the network work.

        Returns:
            Awaitable of the ranked gateway pairs

        Raises:
            GatewayDiscoveryValidationError: Synchronously, for invalid parameters
            GatewayDiscoveryError: From the awaitable, when discovery fails
        """
        return self._run(_validate(params))

    async def _run(self, run: _DiscoveryRun) -> List[GatewayPair]:
        try:
            return await self._discover(run)
        except GatewayDiscoveryError:
            raise
        except Exception as e:
            self.logger.error(f"Gateway discovery on {run.network_id} failed: {e}")
            raise GatewayDiscoveryError() from e

    async def _discover(self, run: _DiscoveryRun) -> List[GatewayPair]:
        document = await self._fetch_bootnodes(run)
        dvote_nodes, web3_nodes = digest_network(
            document, run.network_id, run.environment, self.transport, self.rpc_factory
        )

        healthy_dvote, healthy_web3 = await self._select_working(run, dvote_nodes, web3_nodes)
        ranked_dvote = rank_dvote(healthy_dvote)
        ranked_web3 = rank_web3(healthy_web3)

        if run.archive_ipns_id:
            for node in ranked_web3:
                node.archive_ipns_id = run.archive_ipns_id

        pairs = build_pairs(ranked_dvote, ranked_web3)
        if not any(pair.is_ready for pair in pairs):
            raise GatewayDiscoveryError(DiscoveryErrorKind.NO_CANDIDATES_READY)

        self.logger.info(
            f"Discovered {len(pairs)} gateway(s) on {run.network_id} "
            f"({len(ranked_dvote)} DVote, {len(ranked_web3)} Web3)"
        )
        return pairs

    async def _fetch_bootnodes(self, run: _DiscoveryRun) -> BootnodeDocument:
        try:
            document = await with_timeout(
                get_gateways_from_uri(run.source, self.transport, run.timeout_ms),
                run.timeout_ms,
            )
        except GatewayTimeoutError:
            raise GatewayDiscoveryError(DiscoveryErrorKind.BOOTNODE_TIMEOUT_ERROR) from None
        except BootnodeError as e:
            self.logger.warning(f"Could not fetch the bootnode data: {e}")
            raise GatewayDiscoveryError(DiscoveryErrorKind.BOOTNODE_FETCH_ERROR) from e

        network = document.get_network(run.network_id)
        if network is None or len(network.dvote) < run.min_gateways:
            raise GatewayDiscoveryError(DiscoveryErrorKind.BOOTNODE_NOT_ENOUGH_GATEWAYS)

        nodes = NetworkBootnodes(
            web3=tuple(shuffle(dedup_by_uri(network.web3))),
            dvote=tuple(shuffle(dedup_by_uri(network.dvote))),
        )
        return document.with_network(run.network_id, nodes)

    async def _select_working(
        self,
        run: _DiscoveryRun,
        dvote_nodes: List[DVoteGateway],
        web3_nodes: List[Web3Gateway],
    ) -> Tuple[List[DVoteGateway], List[Web3Gateway]]:
        working_dvote: List[DVoteGateway] = []
        working_web3: List[Web3Gateway] = []
        minimum = run.min_gateways

        for multiplier in TIMEOUT_MULTIPLIERS:
            round_timeout = run.timeout_ms * multiplier
            dvote_candidates = [
                n for n in dvote_nodes if n not in working_dvote and is_retry_candidate(n.attempts)
            ]
            web3_candidates = [
                n for n in web3_nodes if n not in working_web3 and is_retry_candidate(n.attempts)
            ]

            while True:
                dvote_batch: List[DVoteGateway] = []
                web3_batch: List[Web3Gateway] = []
                if len(working_dvote) < minimum:
                    dvote_batch = dvote_candidates[:self.parallel_tests]
                    del dvote_candidates[:self.parallel_tests]
                if len(working_web3) < minimum:
                    web3_batch = web3_candidates[:self.parallel_tests]
                    del web3_candidates[:self.parallel_tests]
                if not dvote_batch and not web3_batch:
                    break

                dvote_ok, web3_ok = await self._check_batch(run, dvote_batch, web3_batch, round_timeout)
                working_dvote.extend(dvote_ok)
                working_web3.extend(web3_ok)

                if len(working_dvote) >= minimum and len(working_web3) >= minimum:
                    break

            if len(working_dvote) >= minimum and len(working_web3) >= minimum:
                return working_dvote, working_web3
            self.logger.debug(
                f"Round of {round_timeout}ms on {run.network_id} ended with "
                f"{len(working_dvote)} DVote and {len(working_web3)} Web3 gateways"
            )

        raise GatewayDiscoveryError(DiscoveryErrorKind.NO_WORKING_GATEWAYS)

    async def _check_batch(
        self,
        run: _DiscoveryRun,
        dvote_batch: List[DVoteGateway],
        web3_batch: List[Web3Gateway],
        timeout_ms: int,
    ) -> Tuple[List[DVoteGateway], List[Web3Gateway]]:
        results = await asyncio.gather(
            *(node.check_status(timeout_ms) for node in dvote_batch),
            *(node.check_status(timeout_ms, run.resolve_ens) for node in web3_batch),
            return_exceptions=True,
        )
        dvote_results = results[:len(dvote_batch)]
        web3_results = results[len(dvote_batch):]

        dvote_ok = []
        for node, result in zip(dvote_batch, dvote_results):
            if isinstance(result, BaseException):
                self._log_failure(node.uri, result)
            else:
                dvote_ok.append(node)

        web3_ok = []
        for node, result in zip(web3_batch, web3_results):
            if isinstance(result, BaseException):
                self._log_failure(node.uri, result)
            elif self._accept_web3(run, node):
                web3_ok.append(node)
        return dvote_ok, web3_ok

    def _accept_web3(self, run: _DiscoveryRun, node: Web3Gateway) -> bool:
        if run.resolve_ens and not node.contract_addresses.entity_resolver:
            self._log_failure(node.uri, "the entity resolver could not be resolved")
            return False
        if node.peer_count is not None and node.peer_count != -1 and node.peer_count < MIN_WEB3_PEERS:
            self._log_failure(node.uri, f"only {node.peer_count} peers")
            return False
        return True

    def _log_failure(self, uri: Optional[str], reason: Any) -> None:
        rate_limited_log(f"Discarding {uri}: {reason}", level="warning", logger_instance=self.logger)


def discover_gateways(
    network_id: str,
    bootnodes_content_uri: BootnodeSource,
    environment: str = DEFAULT_ENVIRONMENT,
    number_of_gateways: Optional[int] = None,
    timeout: Optional[int] = None,
    resolve_ens: bool = False,
    archive_ipns_id: Optional[str] = None,
    transport: Optional[GatewayTransport] = None,
    rpc_factory: Optional[ChainRPCFactory] = None,
) -> Awaitable[List[GatewayPair]]:
    """
    Shortcut for GatewayDiscovery(...).run(DiscoveryParameters(...)).

    Invalid parameters raise right away, before the result is awaited.
    """
    params = DiscoveryParameters(
        network_id=network_id,
        bootnodes_content_uri=bootnodes_content_uri,
        environment=environment,
        number_of_gateways=number_of_gateways,
        timeout=timeout,
        resolve_ens=resolve_ens,
        archive_ipns_id=archive_ipns_id,
    )
    return GatewayDiscovery(transport=transport, rpc_factory=rpc_factory).run(params)

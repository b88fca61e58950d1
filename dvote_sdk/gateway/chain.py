"""
Client for the Web3 side of a Gateway.
"""
import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, List, Optional, Protocol, Tuple, TypeVar

from ens import AsyncENS
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import Web3Exception

from ..config import (
    DEFAULT_ENVIRONMENT,
    ENTITY_RESOLVER_ENS_SUBDOMAIN,
    ENVIRONMENTS,
    ERC20_STORAGE_PROOFS_ENS_SUBDOMAIN,
    GATEWAY_SELECTION_TIMEOUT_MS,
    GENESIS_ENS_SUBDOMAIN,
    NAMESPACES_ENS_SUBDOMAIN,
    PROCESSES_ENS_SUBDOMAIN,
    RESULTS_ENS_SUBDOMAIN,
    NetworkConfig,
    ens_root_domain,
)
from ..models import AttemptOutcome, ContractAddresses, RequestAttempt, Web3NodeInfo
from ..utils import elapsed_ms, with_timeout
from .exceptions import ChainSyncingError, EnsResolutionError, GatewayTimeoutError
from .dvote import MAX_ATTEMPT_HISTORY
from .scoring import WEB3_WEIGHTS, ScoreWeights, weighted_score

T = TypeVar("T")

logger = logging.getLogger(__name__)

# Subdomain of each contract under the environment's root domain
CONTRACT_SUBDOMAINS = {
    "entity_resolver": ENTITY_RESOLVER_ENS_SUBDOMAIN,
    "genesis": GENESIS_ENS_SUBDOMAIN,
    "namespaces": NAMESPACES_ENS_SUBDOMAIN,
    "processes": PROCESSES_ENS_SUBDOMAIN,
    "results": RESULTS_ENS_SUBDOMAIN,
    "token_storage_proof": ERC20_STORAGE_PROOFS_ENS_SUBDOMAIN,
}

# Peer count reported when the node does not expose it
UNKNOWN_PEER_COUNT = -1


class ChainRPC(Protocol):
    """The JSON-RPC calls a Web3Gateway relies on"""

    async def get_block_number(self) -> int:
        ...

    async def get_peer_count(self) -> int:
        ...

    async def is_syncing(self) -> bool:
        ...

    async def resolve_name(self, name: str) -> Optional[str]:
        ...


ChainRPCFactory = Callable[[str, Optional[str], str], ChainRPC]


class Web3ChainRPC:
    """
    ChainRPC over web3's async HTTP provider.

    Names are resolved with the ENS registry configured for the network and
    environment, or web3's default registry when there is none.
    """

    def __init__(
        self,
        uri: str,
        network_id: Optional[str] = None,
        environment: str = DEFAULT_ENVIRONMENT,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.uri = uri
        self.network_id = network_id
        self.environment = environment
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(uri))
        self._ns: Optional[AsyncENS] = None

    @property
    def ns(self) -> AsyncENS:
        if self._ns is None:
            registry = None
            if self.network_id:
                registry = NetworkConfig.ens_registry(self.network_id, self.environment)
            if registry:
                self._ns = AsyncENS.from_web3(self.w3, addr=Web3.to_checksum_address(registry))
            else:
                self._ns = AsyncENS.from_web3(self.w3)
        return self._ns

    async def get_block_number(self) -> int:
        return await self.w3.eth.block_number

    async def get_peer_count(self) -> int:
        try:
            return await self.w3.net.peer_count
        except (ValueError, Web3Exception) as e:
            # Some providers do not expose net_peerCount
            logger.debug(f"Peer count not available on {self.uri}: {e}")
            return UNKNOWN_PEER_COUNT

    async def is_syncing(self) -> bool:
        return bool(await self.w3.eth.syncing)

    async def resolve_name(self, name: str) -> Optional[str]:
        return await self.ns.address(name)


async def _timed(call: Awaitable[T]) -> Tuple[T, int]:
    start = time.monotonic()
    result = await call
    return result, elapsed_ms(start)


async def _gather_or_raise(*calls: Awaitable[Any]) -> List[Any]:
    """Await all the calls concurrently; raise the first failure once all settled."""
    results = await asyncio.gather(*calls, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


class Web3Gateway:
    """
    Client of the Web3 (JSON-RPC) endpoint of a Gateway.

    Contract addresses are resolved through ENS on first use and reset when
    the environment changes.

    Args:
        uri: JSON-RPC endpoint
        network_id: Network the endpoint belongs to
        environment: prod, stg or dev
        rpc: Chain RPC to use instead of one built for the endpoint
        rpc_factory: Builds the chain RPC for (uri, network_id, environment)
        weights: Score weights used by check_status
        logger: Logger (defaults to the module logger)
    """

    def __init__(
        self,
        uri: str,
        network_id: Optional[str] = None,
        environment: str = DEFAULT_ENVIRONMENT,
        rpc: Optional[ChainRPC] = None,
        rpc_factory: Optional[ChainRPCFactory] = None,
        weights: ScoreWeights = WEB3_WEIGHTS,
        logger: Optional[logging.Logger] = None,
    ):
        if environment not in ENVIRONMENTS:
            raise ValueError(f"Invalid environment: {environment}")

        self._uri = uri
        self._network_id = network_id
        self._environment = environment
        self._rpc_factory: Optional[ChainRPCFactory] = None if rpc is not None else (rpc_factory or Web3ChainRPC)
        self._rpc = rpc if rpc is not None else self._rpc_factory(uri, network_id, environment)
        self._weights = weights
        self.logger = logger or logging.getLogger(__name__)

        self._addresses = ContractAddresses()
        self._ens_lock = asyncio.Lock()
        self._attempts: Deque[RequestAttempt] = deque(maxlen=MAX_ATTEMPT_HISTORY)
        self._attempt_count = 0

        self.block_number: Optional[int] = None
        self.peer_count: Optional[int] = None
        self.performance_time: Optional[int] = None
        self.weight: Optional[int] = None
        self.archive_ipns_id: Optional[str] = None

    @classmethod
    def from_node_info(cls, info: Web3NodeInfo, **kwargs: Any) -> "Web3Gateway":
        return cls(info.uri, **kwargs)

    def __repr__(self) -> str:
        return f"Web3Gateway(uri={self._uri!r}, block={self.block_number!r}, weight={self.weight!r})"

    @property
    def uri(self) -> str:
        return self._uri

    @property
    def network_id(self) -> Optional[str]:
        return self._network_id

    @property
    def rpc(self) -> ChainRPC:
        return self._rpc

    @property
    def environment(self) -> str:
        return self._environment

    @environment.setter
    def environment(self, value: str) -> None:
        if value not in ENVIRONMENTS:
            raise ValueError(f"Invalid environment: {value}")
        if value == self._environment:
            return
        self._environment = value
        self._addresses = ContractAddresses()
        if self._rpc_factory is not None:
            self._rpc = self._rpc_factory(self._uri, self._network_id, value)

    @property
    def contract_addresses(self) -> ContractAddresses:
        return self._addresses

    @property
    def attempts(self) -> Tuple[RequestAttempt, ...]:
        return tuple(self._attempts)

    @property
    def has_timed_out_last_request(self) -> bool:
        return bool(self._attempts) and self._attempts[-1].outcome is AttemptOutcome.TIMEOUT

    async def check_status(self, timeout_ms: Optional[int] = None, resolve_ens: bool = False) -> None:
        """
        Measure the endpoint: block number, peers, sync state and optionally
        the entity resolver address.

        Raises:
            GatewayTimeoutError: If the checks take longer than `timeout_ms`
            ChainSyncingError: If the node is still syncing
        """
        if timeout_ms is None:
            timeout_ms = GATEWAY_SELECTION_TIMEOUT_MS

        try:
            await with_timeout(
                self._measure(timeout_ms, resolve_ens),
                timeout_ms,
                "The Web3 Gateway is too slow",
            )
        except GatewayTimeoutError:
            self._record_attempt(AttemptOutcome.TIMEOUT)
            raise
        except Exception:
            self._record_attempt(AttemptOutcome.FAILED)
            raise
        self._record_attempt(AttemptOutcome.OK)

    async def _measure(self, timeout_ms: int, resolve_ens: bool) -> None:
        calls = [
            _timed(self._rpc.get_block_number()),
            _timed(self._rpc.get_peer_count()),
            _timed(self._rpc.is_syncing()),
        ]
        if resolve_ens:
            calls.append(_timed(self._rpc.resolve_name(self._ens_name("entity_resolver"))))

        results = await _gather_or_raise(*calls)
        (block_number, _), (peer_count, _), (syncing, _) = results[:3]
        if syncing:
            raise ChainSyncingError()

        entity_resolver = results[3][0] if resolve_ens else None
        performance_time = max(duration for _, duration in results)

        self.block_number = block_number
        self.peer_count = UNKNOWN_PEER_COUNT if peer_count is None else peer_count
        self.performance_time = performance_time
        self.weight = weighted_score(self._weights, performance_time, timeout_ms)
        if entity_resolver:
            self._addresses.entity_resolver = entity_resolver
        self.logger.debug(f"{self._uri} is at block {block_number} ({performance_time}ms)")

    def _ens_name(self, contract: str) -> str:
        return f"{CONTRACT_SUBDOMAINS[contract]}.{ens_root_domain(self._environment)}"

    async def init_ens(self) -> ContractAddresses:
        """
        Resolve every contract address of the current environment.

        Concurrent callers share a single resolution.

        Raises:
            EnsResolutionError: Naming the first contract that did not resolve
        """
        async with self._ens_lock:
            if all(getattr(self._addresses, name) for name in CONTRACT_SUBDOMAINS):
                return self._addresses

            environment = self._environment
            names = [self._ens_name(contract) for contract in CONTRACT_SUBDOMAINS]
            addresses = await _gather_or_raise(*(self._rpc.resolve_name(name) for name in names))

            for contract, name, address in zip(CONTRACT_SUBDOMAINS, names, addresses):
                if not address:
                    raise EnsResolutionError(f"The {contract} address could not be resolved ({name})")

            if environment != self._environment:
                # Environment changed while resolving
                return self._addresses
            self._addresses = ContractAddresses(**dict(zip(CONTRACT_SUBDOMAINS, addresses)))
            self.logger.debug(f"Resolved the contract addresses of {environment} on {self._uri}")
            return self._addresses

    async def get_contract_address(self, contract: str) -> str:
        """
        Address of one contract (entity_resolver, genesis, namespaces,
        processes, results or token_storage_proof), resolved on first use.
        """
        if contract not in CONTRACT_SUBDOMAINS:
            raise ValueError(f"Unknown contract: {contract}")
        address = getattr(self._addresses, contract)
        if address:
            return address
        addresses = await self.init_ens()
        return getattr(addresses, contract)

    def _record_attempt(self, outcome: AttemptOutcome) -> None:
        self._attempt_count += 1
        self._attempts.append(RequestAttempt(self._attempt_count, outcome))

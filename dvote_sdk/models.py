"""
Data models for the DVote SDK.
"""
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel, StrictFloat, StrictInt


# ---------------------------------------------------------------------------
# Bootnode document
# ---------------------------------------------------------------------------

class DVoteNodeInfo(BaseModel):
    """A candidate DVote gateway as listed by a bootnode"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    uri: str
    apis: Tuple[str, ...] = ()
    pub_key: Optional[str] = Field(None, alias="pubKey")


class Web3NodeInfo(BaseModel):
    """A candidate Web3 (JSON-RPC) endpoint as listed by a bootnode"""
    model_config = ConfigDict(frozen=True)

    uri: str


class NetworkBootnodes(BaseModel):
    """The candidates of a single network"""
    model_config = ConfigDict(frozen=True)

    web3: Tuple[Web3NodeInfo, ...] = ()
    dvote: Tuple[DVoteNodeInfo, ...] = ()


class BootnodeDocument(RootModel[Dict[str, NetworkBootnodes]]):
    """
    Bootnode data keyed by network id.

    Instances are never modified; helpers return new documents.
    """
    model_config = ConfigDict(frozen=True)

    def networks(self) -> List[str]:
        return list(self.root.keys())

    def get_network(self, network_id: str) -> Optional[NetworkBootnodes]:
        return self.root.get(network_id)

    def with_network(self, network_id: str, nodes: NetworkBootnodes) -> "BootnodeDocument":
        data = dict(self.root)
        data[network_id] = nodes
        return BootnodeDocument(data)


# ---------------------------------------------------------------------------
# Gateway wire messages
# ---------------------------------------------------------------------------

class RequestEnvelope(BaseModel):
    """What is actually sent to the Gateway"""
    id: str
    request: Dict[str, Any]
    signature: str = ""


class ResponseBody(BaseModel):
    """The `response` field of a Gateway reply; extra result fields are kept"""
    model_config = ConfigDict(extra="allow")

    ok: bool = False
    request: Optional[str] = None
    message: Optional[str] = None
    timestamp: Optional[int] = None


class ResponseEnvelope(BaseModel):
    """A full Gateway reply"""
    id: Optional[str] = None
    response: Optional[ResponseBody] = None
    signature: Optional[str] = None


class GatewayStatus(BaseModel):
    """Result of a `getInfo` request"""
    model_config = ConfigDict(populate_by_name=True)

    api_list: List[str] = Field(..., alias="apiList")
    health: Union[StrictInt, StrictFloat]
    chain_id: Optional[str] = Field(None, alias="chainId")


# ---------------------------------------------------------------------------
# Request attempts
# ---------------------------------------------------------------------------

class AttemptOutcome(str, Enum):
    OK = "ok"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass(frozen=True)
class RequestAttempt:
    """One finished request (or health check) against a node"""
    number: int
    outcome: AttemptOutcome
    timestamp: float = field(default_factory=time.time)


def is_retry_candidate(attempts: Sequence[RequestAttempt]) -> bool:
    """
    Whether discovery should (re)check a node given its attempt history.

    Nodes never tried and nodes whose last attempt timed out qualify.
    """
    return not attempts or attempts[-1].outcome is AttemptOutcome.TIMEOUT


# ---------------------------------------------------------------------------
# Contract addresses
# ---------------------------------------------------------------------------

@dataclass
class ContractAddresses:
    """Contract addresses resolved through ENS for one environment"""
    entity_resolver: Optional[str] = None
    genesis: Optional[str] = None
    namespaces: Optional[str] = None
    processes: Optional[str] = None
    results: Optional[str] = None
    token_storage_proof: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    @classmethod
    def names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

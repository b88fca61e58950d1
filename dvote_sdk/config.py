"""
Configuration for the DVote SDK.

Protocol constants, the packaged network table and environment overrides
for the default timeouts.
"""
import importlib.resources
import json
import logging
import os
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Environments a gateway deployment can belong to
ENVIRONMENTS = ("prod", "stg", "dev")
DEFAULT_ENVIRONMENT = "prod"

# ENS domains holding the contract addresses
VOCDONI_ENS_ROOT = "voc.eth"
VOCDONI_ENS_ROOT_STAGING = "stg." + VOCDONI_ENS_ROOT
VOCDONI_ENS_ROOT_DEV = "dev." + VOCDONI_ENS_ROOT

ENS_ROOT_DOMAINS = {
    "prod": VOCDONI_ENS_ROOT,
    "stg": VOCDONI_ENS_ROOT_STAGING,
    "dev": VOCDONI_ENS_ROOT_DEV,
}

ENTITY_RESOLVER_ENS_SUBDOMAIN = "entities"
GENESIS_ENS_SUBDOMAIN = "genesis"
NAMESPACES_ENS_SUBDOMAIN = "namespaces"
PROCESSES_ENS_SUBDOMAIN = "processes"
RESULTS_ENS_SUBDOMAIN = "results"
ERC20_STORAGE_PROOFS_ENS_SUBDOMAIN = "erc20.proofs"

BOOT_NODES_TEXT_RECORD_KEY = "vnd.vocdoni.boot-nodes"

# Milliseconds
GATEWAY_SELECTION_TIMEOUT_MS = 4000
DEFAULT_REQUEST_TIMEOUT_MS = 15 * 1000

DISCOVERY_TIMEOUT_ENV = "DVOTE_DISCOVERY_TIMEOUT_MS"
REQUEST_TIMEOUT_ENV = "DVOTE_REQUEST_TIMEOUT_MS"


def ens_root_domain(environment: str) -> str:
    """Root ENS domain for the given environment."""
    try:
        return ENS_ROOT_DOMAINS[environment]
    except KeyError:
        raise ValueError(f"Invalid environment: {environment}")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (not an integer), using %d", name, raw, default)
        return default
    if value < 0:
        logger.warning("Ignoring %s=%r (negative), using %d", name, raw, default)
        return default
    return value


def default_discovery_timeout_ms() -> int:
    """Per-round discovery timeout, overridable with DVOTE_DISCOVERY_TIMEOUT_MS."""
    return _env_int(DISCOVERY_TIMEOUT_ENV, GATEWAY_SELECTION_TIMEOUT_MS)


def default_request_timeout_ms() -> int:
    """Per-request timeout, overridable with DVOTE_REQUEST_TIMEOUT_MS."""
    return _env_int(REQUEST_TIMEOUT_ENV, DEFAULT_REQUEST_TIMEOUT_MS)


class NetworkConfig:
    """
    Access to the packaged table of known Ethereum networks.

    The table is read once from ``networks.json`` and cached on the class.
    """

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load the network table.

        Returns:
            Mapping of network id to its chain id and ENS registries
        """
        if cls._networks_cache is not None:
            return cls._networks_cache

        resource = importlib.resources.files("dvote_sdk").joinpath("networks.json")
        with resource.open("r", encoding="utf-8") as f:
            cls._networks_cache = json.load(f)
        return cls._networks_cache

    @classmethod
    def list_networks(cls) -> List[str]:
        return sorted(cls.load_networks().keys())

    @classmethod
    def get_network(cls, network_id: str) -> Dict[str, Any]:
        """
        Get the configuration of one network.

        Raises:
            ValueError: If the network is not known
        """
        networks = cls.load_networks()
        if network_id not in networks:
            raise ValueError(
                f"Unknown network '{network_id}'. Known networks: {', '.join(sorted(networks))}"
            )
        return networks[network_id]

    @classmethod
    def ens_registry(cls, network_id: str, environment: str = DEFAULT_ENVIRONMENT) -> Optional[str]:
        """
        ENS registry address for a network and environment.

        Unknown networks and networks using the standard registry give None,
        which lets web3 pick its default registry.
        """
        if environment not in ENVIRONMENTS:
            raise ValueError(f"Invalid environment: {environment}")
        networks = cls.load_networks()
        network = networks.get(network_id)
        if not network:
            return None
        return (network.get("ensRegistry") or {}).get(environment)

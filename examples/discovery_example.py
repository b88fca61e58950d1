#!/usr/bin/env python3
"""
Example discovering the working gateways of a network.
"""
import asyncio
import logging
import os

from dvote_sdk import DiscoveryErrorKind, GatewayDiscoveryError, discover_gateways

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main():
    """
    Discover gateways and print them by rank.

    This example shows:
    1. Running discovery against a bootnode URI
    2. Branching on the kind of a discovery failure
    3. Reading the metrics of the selected gateways
    """
    # Read configuration from environment
    NETWORK = os.environ.get("NETWORK", "goerli")
    BOOTNODES_URI = os.environ.get("BOOTNODES_URI", "https://bootnodes.example.com/gateways.json")
    ENVIRONMENT = os.environ.get("DVOTE_ENVIRONMENT", "prod")

    print("\n=== DVote SDK Gateway Discovery Example ===\n")
    print(f"Network: {NETWORK}")
    print(f"Bootnodes: {BOOTNODES_URI}\n")

    try:
        pairs = await discover_gateways(
            NETWORK,
            BOOTNODES_URI,
            environment=ENVIRONMENT,
            number_of_gateways=2,
            resolve_ens=True,
        )
    except GatewayDiscoveryError as e:
        if e.kind is DiscoveryErrorKind.BOOTNODE_FETCH_ERROR:
            print(f"Check the bootnode URI: {e}")
        else:
            print(f"Discovery failed: {e}")
        return

    for rank, pair in enumerate(pairs, start=1):
        print(f"{rank}. {pair.dvote.uri}")
        print(f"   APIs: {', '.join(pair.dvote.supported_apis)}")
        print(f"   Health: {pair.dvote.health}, response time: {pair.dvote.response_time}ms")
        print(f"   Web3: {pair.web3.uri} at block {pair.web3.block_number}")

    entity_resolver = pairs[0].web3.contract_addresses.entity_resolver
    print(f"\nEntity resolver: {entity_resolver}")


if __name__ == "__main__":
    asyncio.run(main())

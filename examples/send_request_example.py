#!/usr/bin/env python3
"""
Example sending signed requests to a discovered gateway.
"""
import asyncio
import logging
import os

from dvote_sdk import (
    BadSignatureError,
    GatewayRequestFailedError,
    GatewayTimeoutError,
    LocalSigner,
    discover_gateways,
)
from dvote_sdk.gateway import get_transport

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main():
    NETWORK = os.environ.get("NETWORK", "goerli")
    BOOTNODES_URI = os.environ.get("BOOTNODES_URI", "https://bootnodes.example.com/gateways.json")
    PRIVATE_KEY = os.environ.get("PRIVATE_KEY")
    if not PRIVATE_KEY:
        print("Set PRIVATE_KEY to sign the requests")
        return

    signer = LocalSigner(PRIVATE_KEY)
    print(f"Wallet address: {signer.address}")

    try:
        pairs = await discover_gateways(NETWORK, BOOTNODES_URI)
        gateway = pairs[0].dvote
        print(f"Using {gateway.uri}")

        # getInfo is always available and needs no signature
        info = await gateway.send_request({"method": "getInfo"})
        print(f"Gateway APIs: {info['apiList']}, health {info['health']}")

        if gateway.supports_method("getBlockHeight"):
            reply = await pairs[0].send_request({"method": "getBlockHeight"}, signer, timeout_ms=5000)
            print(f"Block height: {reply.get('height')}")
    except GatewayTimeoutError:
        print("The gateway did not answer in time")
    except BadSignatureError:
        print("The gateway reply was not signed by the expected key")
    except GatewayRequestFailedError as e:
        print(f"The gateway rejected the request: {e}")
    finally:
        await get_transport().aclose()


if __name__ == "__main__":
    asyncio.run(main())

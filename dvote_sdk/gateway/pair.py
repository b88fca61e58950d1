"""
A discovered gateway: its DVote client and its Web3 client.
"""
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from ..signing import MessageSigner
from .chain import Web3Gateway
from .dvote import DVoteGateway


@dataclass
class GatewayPair:
    dvote: DVoteGateway
    web3: Web3Gateway

    @property
    def is_ready(self) -> bool:
        return self.dvote.is_ready

    async def send_request(
        self,
        body: Mapping[str, Any],
        signer: Optional[MessageSigner] = None,
        timeout_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Send a request through the DVote side (see DVoteGateway.send_request)."""
        return await self.dvote.send_request(body, signer, timeout_ms)

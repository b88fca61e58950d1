"""
In-process transport that simulates DVote Gateways.

Gateways registered on a StubTransport answer `getInfo` with their
configured state and every other method with queued replies. Replies are
signed like a real Gateway would sign them, and can be delayed, made to
fail or tampered with. Bootnode documents are served from memory.
"""
import asyncio
import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Union

from ..signing import LocalSigner, serialize
from .exceptions import GatewayConnectionError
from .transport import GatewayTransport

logger = logging.getLogger(__name__)


@dataclass
class StubReply:
    """
    A reply a stub Gateway sends for one request.

    Attributes:
        response: Fields of the `response` object (`request` and `timestamp`
            are filled in when absent)
        request_id: Echoed request id (the real one when None)
        omit_response: Send an envelope without `response`
        signature: Signature to send instead of the computed one
        tamper: Alter the response after signing it
        delay_ms: Extra latency
        error: Exception raised instead of replying
    """
    response: Dict[str, Any] = field(default_factory=lambda: {"ok": True})
    request_id: Optional[str] = None
    omit_response: bool = False
    signature: Optional[str] = None
    tamper: bool = False
    delay_ms: int = 0
    error: Optional[Exception] = None


@dataclass
class StubGateway:
    """State of a simulated Gateway"""
    apis: List[str] = field(default_factory=lambda: ["file", "vote", "census", "results"])
    health: Union[int, float] = 100
    chain_id: Optional[str] = None
    delay_ms: int = 0
    error: Optional[Exception] = None
    info_response: Optional[Dict[str, Any]] = None
    replies: Deque[StubReply] = field(default_factory=deque)


@dataclass
class StubDocument:
    content: str
    delay_ms: int = 0
    error: Optional[Exception] = None


@dataclass(frozen=True)
class StubInteraction:
    uri: str
    method: Optional[str]
    request_id: Optional[str]
    envelope: Dict[str, Any]


class StubTransport(GatewayTransport):
    """
    Transport answering from simulated Gateways.

    Args:
        private_key: Key the simulated Gateways sign with (no signature if None)
    """

    def __init__(self, private_key: Optional[str] = None):
        self._signer = LocalSigner(private_key) if private_key else None
        self.gateways: Dict[str, StubGateway] = {}
        self.documents: Dict[str, StubDocument] = {}
        self.interactions: List[StubInteraction] = []
        self.fetches: List[str] = []
        self.closed = False

    @property
    def public_key(self) -> Optional[str]:
        """Public key the simulated Gateways sign with"""
        return self._signer.public_key if self._signer else None

    def add_gateway(self, uri: str, apis: Optional[Sequence[str]] = None, **kwargs: Any) -> StubGateway:
        gateway = StubGateway(**kwargs)
        if apis is not None:
            gateway.apis = list(apis)
        self.gateways[uri] = gateway
        return gateway

    def queue_reply(self, uri: str, reply: Optional[StubReply] = None, **kwargs: Any) -> StubReply:
        """Queue the reply to the next non-`getInfo` request sent to `uri`."""
        if uri not in self.gateways:
            raise KeyError(f"No stub gateway at {uri}")
        reply = reply or StubReply(**kwargs)
        self.gateways[uri].replies.append(reply)
        return reply

    def add_document(
        self,
        uri: str,
        content: Union[str, Mapping[str, Any]],
        delay_ms: int = 0,
        error: Optional[Exception] = None,
    ) -> None:
        if not isinstance(content, str):
            content = json.dumps(content)
        self.documents[uri] = StubDocument(content=content, delay_ms=delay_ms, error=error)

    def requests_to(self, uri: str) -> List[StubInteraction]:
        return [i for i in self.interactions if i.uri == uri]

    async def post(self, uri: str, payload: bytes, timeout_ms: Optional[int] = None) -> bytes:
        envelope = json.loads(payload)
        request = envelope.get("request") or {}
        method = request.get("method")
        request_id = envelope.get("id")
        self.interactions.append(StubInteraction(uri, method, request_id, envelope))

        gateway = self.gateways.get(uri)
        if gateway is None:
            raise GatewayConnectionError(f"Could not reach {uri}")

        if method == "getInfo":
            reply = StubReply(response=self._info_response(gateway))
        elif gateway.replies:
            reply = gateway.replies.popleft()
        else:
            reply = StubReply()

        delay = gateway.delay_ms + reply.delay_ms
        if delay:
            await asyncio.sleep(delay / 1000)

        error = reply.error or gateway.error
        if error is not None:
            raise error

        logger.debug(f"Stub gateway {uri} answering {method} ({request_id})")
        return self._encode_reply(reply, request_id)

    async def fetch_string(self, uri: str, timeout_ms: Optional[int] = None) -> str:
        self.fetches.append(uri)
        document = self.documents.get(uri)
        if document is None:
            raise GatewayConnectionError(f"Could not fetch {uri}")
        if document.delay_ms:
            await asyncio.sleep(document.delay_ms / 1000)
        if document.error is not None:
            raise document.error
        return document.content

    async def aclose(self) -> None:
        self.closed = True

    def _info_response(self, gateway: StubGateway) -> Dict[str, Any]:
        if gateway.info_response is not None:
            return dict(gateway.info_response)
        response: Dict[str, Any] = {"ok": True, "apiList": list(gateway.apis), "health": gateway.health}
        if gateway.chain_id is not None:
            response["chainId"] = gateway.chain_id
        return response

    def _encode_reply(self, reply: StubReply, request_id: Optional[str]) -> bytes:
        message: Dict[str, Any] = {"id": reply.request_id or request_id}
        if reply.omit_response:
            return serialize(message)

        response = dict(reply.response)
        response.setdefault("request", reply.request_id or request_id)
        response.setdefault("timestamp", int(time.time()))
        response_bytes = serialize(response)

        signature = ""
        if self._signer is not None:
            signature = self._signer.sign_message(response_bytes)
        if reply.signature is not None:
            signature = reply.signature

        if reply.tamper:
            response["tampered"] = True
            response_bytes = serialize(response)

        return (
            b'{"id":' + json.dumps(message["id"]).encode("utf-8")
            + b',"response":' + response_bytes
            + b',"signature":' + json.dumps(signature).encode("utf-8")
            + b"}"
        )

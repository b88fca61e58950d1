"""
Client for the DVote side of a Gateway.

A DVoteGateway sends signed requests to one endpoint, checks the replies
(request id binding, signature over the literal response bytes, `ok` flag)
and keeps the health metrics used to rank Gateways during discovery.
"""
import json
import logging
import time
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from ..config import GATEWAY_SELECTION_TIMEOUT_MS, default_request_timeout_ms
from ..models import AttemptOutcome, DVoteNodeInfo, GatewayStatus, RequestAttempt, ResponseBody, ResponseEnvelope
from ..signing import MessageSigner, build_request, encode_request, extract_json_field_bytes, verify
from ..utils import elapsed_ms, with_timeout
from .apis import is_method_supported
from .exceptions import (
    BadSignatureError,
    GatewayNotReadyError,
    GatewayRequestFailedError,
    GatewayTimeoutError,
    InvalidResponseError,
    RequestIdMismatchError,
    UnsupportedMethodError,
)
from .scoring import DVOTE_WEIGHTS, ScoreWeights, weighted_score
from .transport import GatewayTransport

logger = logging.getLogger(__name__)

# Attempts kept per client
MAX_ATTEMPT_HISTORY = 20


class DVoteGateway:
    """
    Client of a single DVote Gateway endpoint.

    The client is *prepared* once it has an endpoint and an API list, and
    *ready* after its first successful status check.

    Args:
        uri: Endpoint of the Gateway
        supported_apis: APIs the Gateway is known to expose
        public_key: Gateway public key; replies are verified when set
        transport: Transport to use (the shared default when None)
        weights: Score weights used by check_status
        logger: Logger (defaults to the module logger)
    """

    def __init__(
        self,
        uri: Optional[str],
        supported_apis: Optional[Iterable[str]] = None,
        public_key: Optional[str] = None,
        transport: Optional[GatewayTransport] = None,
        weights: ScoreWeights = DVOTE_WEIGHTS,
        logger: Optional[logging.Logger] = None,
    ):
        self._uri = uri
        self._supported_apis: Optional[List[str]] = list(supported_apis) if supported_apis is not None else []
        self._public_key = public_key or None
        self._transport = transport
        self._weights = weights
        self.logger = logger or logging.getLogger(__name__)

        self._health: Optional[Union[int, float]] = None
        self._weight: Optional[int] = None
        self._response_time: Optional[int] = None
        self._chain_id: Optional[str] = None
        self._attempts: Deque[RequestAttempt] = deque(maxlen=MAX_ATTEMPT_HISTORY)
        self._attempt_count = 0

    @classmethod
    def from_node_info(
        cls,
        info: DVoteNodeInfo,
        transport: Optional[GatewayTransport] = None,
        **kwargs: Any,
    ) -> "DVoteGateway":
        """Client for a candidate listed by a bootnode."""
        return cls(info.uri, info.apis, info.pub_key, transport=transport, **kwargs)

    def __repr__(self) -> str:
        return f"DVoteGateway(uri={self._uri!r}, apis={self._supported_apis!r}, weight={self._weight!r})"

    # Properties

    @property
    def uri(self) -> Optional[str]:
        return self._uri

    @property
    def supported_apis(self) -> List[str]:
        return list(self._supported_apis or [])

    @property
    def public_key(self) -> Optional[str]:
        return self._public_key

    @property
    def health(self) -> Optional[Union[int, float]]:
        return self._health

    @property
    def weight(self) -> Optional[int]:
        return self._weight

    @property
    def response_time(self) -> Optional[int]:
        """Duration of the last successful status check, in milliseconds"""
        return self._response_time

    @property
    def transport(self) -> GatewayTransport:
        if self._transport is None:
            from . import get_transport
            self._transport = get_transport()
        return self._transport

    @property
    def is_prepared(self) -> bool:
        return bool(self._uri) and isinstance(self._supported_apis, list)

    @property
    def is_ready(self) -> bool:
        return self.is_prepared and self._response_time is not None

    @property
    def attempts(self) -> Tuple[RequestAttempt, ...]:
        return tuple(self._attempts)

    @property
    def last_attempt(self) -> Optional[RequestAttempt]:
        return self._attempts[-1] if self._attempts else None

    @property
    def has_timed_out_last_request(self) -> bool:
        last = self.last_attempt
        return last is not None and last.outcome is AttemptOutcome.TIMEOUT

    def supports_method(self, method: Optional[str]) -> bool:
        """Whether the Gateway handles `method`, given the APIs it currently reports."""
        return is_method_supported(method, self._supported_apis or [])

    # Requests

    async def send_request(
        self,
        body: Mapping[str, Any],
        signer: Optional[MessageSigner] = None,
        timeout_ms: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Send a request and return the verified `response` payload.

        Args:
            body: Request body; must contain `method`
            signer: Signs the request when given
            timeout_ms: Deadline (DVOTE_REQUEST_TIMEOUT_MS or 15s by default)

        Returns:
            The fields of the `response` object, as sent by the Gateway

        Raises:
            GatewayNotReadyError: If the client has no endpoint or API list
            UnsupportedMethodError: If the Gateway does not expose the method
            GatewayTimeoutError: If the deadline passes
            InvalidResponseError: If the reply is not a valid envelope
            RequestIdMismatchError: If the reply belongs to another request
            BadSignatureError: If the reply signature does not verify
            GatewayRequestFailedError: If the Gateway answered `ok: false`
        """
        if not self.is_prepared:
            raise GatewayNotReadyError()
        if not isinstance(body, Mapping):
            raise ValueError("The payload should be a mapping")

        method = body.get("method")
        if not self.supports_method(method):
            raise UnsupportedMethodError(method)

        if timeout_ms is None:
            timeout_ms = default_request_timeout_ms()

        envelope = build_request(body, signer)
        payload = encode_request(envelope)
        self.logger.debug(f"Sending {method} request {envelope.id} to {self._uri}")

        try:
            raw = await with_timeout(
                self.transport.post(self._uri, payload, timeout_ms),
                timeout_ms,
            )
            result = self._check_response(envelope.id, raw)
        except GatewayTimeoutError:
            self._record_attempt(AttemptOutcome.TIMEOUT)
            self.logger.debug(f"Request {envelope.id} to {self._uri} timed out after {timeout_ms}ms")
            raise
        except Exception:
            self._record_attempt(AttemptOutcome.FAILED)
            raise

        self._record_attempt(AttemptOutcome.OK)
        return result

    def _check_response(self, request_id: str, raw: bytes) -> Dict[str, Any]:
        try:
            response_bytes = extract_json_field_bytes(raw, "response")
            message = ResponseEnvelope.model_validate_json(raw)
        except (ValueError, ValidationError) as e:
            raise InvalidResponseError() from e
        if message.response is None or response_bytes is None:
            raise InvalidResponseError()

        # Checks run on the same bytes the signature covers
        body = ResponseBody.model_validate_json(response_bytes)

        if body.request != request_id:
            raise RequestIdMismatchError(request_id, body.request)
        if message.id is not None and message.id != request_id:
            raise RequestIdMismatchError(request_id, message.id)

        if self._public_key and not verify(message.signature, self._public_key, response_bytes):
            self.logger.warning(f"Bad signature in the reply of {self._uri} to request {request_id}")
            raise BadSignatureError()

        if not body.ok:
            raise GatewayRequestFailedError(body.message)
        return json.loads(response_bytes)

    # Status

    async def get_info(self, timeout_ms: Optional[int] = None) -> GatewayStatus:
        """
        Ask the Gateway for its API list, health and chain id.

        Raises:
            InvalidResponseError: If the reply lacks a valid API list or health
        """
        response = await self.send_request({"method": "getInfo"}, timeout_ms=timeout_ms)
        try:
            return GatewayStatus.model_validate(response)
        except ValidationError as e:
            self._record_attempt(AttemptOutcome.FAILED)
            raise InvalidResponseError("Invalid getInfo response") from e

    async def check_status(self, timeout_ms: Optional[int] = None) -> None:
        """
        Refresh health, response time, weight and API list.

        Nothing is updated unless the whole check succeeds.
        """
        if timeout_ms is None:
            timeout_ms = GATEWAY_SELECTION_TIMEOUT_MS

        start = time.monotonic()
        status = await self.get_info(timeout_ms)
        response_time = elapsed_ms(start)
        weight = weighted_score(self._weights, response_time, timeout_ms, status.health)

        self._supported_apis = list(status.api_list)
        self._health = status.health
        self._response_time = response_time
        self._weight = weight
        if status.chain_id:
            self._chain_id = status.chain_id
        self.logger.debug(f"{self._uri} is healthy ({response_time}ms, weight {weight})")

    async def init(self, required_apis: Iterable[str] = (), timeout_ms: Optional[int] = None) -> None:
        """
        Make sure the client is ready and exposes the required APIs.

        The status is only checked when the client is not ready yet or one of
        the APIs is not known to be supported.

        Raises:
            UnsupportedMethodError: If the Gateway lacks one of the APIs
        """
        required = list(required_apis)
        if not self.is_ready or any(api not in self.supported_apis for api in required):
            await self.check_status(timeout_ms)

        for api in required:
            if api not in self.supported_apis:
                raise UnsupportedMethodError(api, f"The gateway does not support the '{api}' API")

    async def get_chain_id(self, timeout_ms: Optional[int] = None) -> str:
        """Chain id reported by the Gateway, fetched once."""
        if self._chain_id is not None:
            return self._chain_id

        status = await self.get_info(timeout_ms)
        if not status.chain_id:
            raise InvalidResponseError("The Gateway did not report a chain ID")
        self._chain_id = status.chain_id
        return self._chain_id

    def _record_attempt(self, outcome: AttemptOutcome) -> None:
        self._attempt_count += 1
        self._attempts.append(RequestAttempt(self._attempt_count, outcome))

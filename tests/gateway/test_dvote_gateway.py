"""
Tests for the DVote gateway client.
"""
import json

import pytest

from dvote_sdk.gateway.dvote import DVoteGateway
from dvote_sdk.gateway.exceptions import (
    BadSignatureError,
    GatewayConnectionError,
    GatewayNotReadyError,
    GatewayRequestFailedError,
    GatewayTimeoutError,
    InvalidResponseError,
    RequestIdMismatchError,
    UnsupportedMethodError,
)
from dvote_sdk.gateway.stub_transport import StubReply, StubTransport
from dvote_sdk.models import AttemptOutcome, DVoteNodeInfo
from dvote_sdk.signing import verify_json

GW_URI = "http://gw1/dvote"


@pytest.fixture
def transport(stub_transport):
    stub_transport.add_gateway(GW_URI, apis=["file", "census"], health=90, chain_id="goerli")
    return stub_transport


@pytest.fixture
def gateway(transport):
    return DVoteGateway(GW_URI, ["file", "census"], transport.public_key, transport=transport)


class TestState:
    """Tests for the prepared / ready states."""

    def test_unconfigured(self, transport):
        """A client without URI is neither prepared nor ready."""
        gateway = DVoteGateway(None, transport=transport)
        assert not gateway.is_prepared
        assert not gateway.is_ready

    def test_prepared(self, gateway):
        """Test a client with URI and APIs before any check."""
        assert gateway.is_prepared
        assert not gateway.is_ready
        assert gateway.attempts == ()
        assert gateway.last_attempt is None
        assert not gateway.has_timed_out_last_request

    def test_from_node_info(self, transport):
        """Test building a client from a bootnode entry."""
        info = DVoteNodeInfo(uri=GW_URI, apis=("vote",), pubKey="0x02ab")
        gateway = DVoteGateway.from_node_info(info, transport=transport)
        assert gateway.uri == GW_URI
        assert gateway.supported_apis == ["vote"]
        assert gateway.public_key == "0x02ab"

    def test_supports_method(self, gateway):
        """Test method support against the API list."""
        assert gateway.supports_method("addCensus")
        assert gateway.supports_method("fetchFile")
        assert gateway.supports_method("getInfo")
        assert not gateway.supports_method("submitEnvelope")

    def test_supported_apis_is_a_copy(self, gateway):
        """Test that the API list cannot be changed from outside."""
        gateway.supported_apis.append("vote")
        assert not gateway.supports_method("submitEnvelope")

    @pytest.mark.asyncio
    async def test_default_transport(self, monkeypatch):
        """Test that the process-wide transport is used by default."""
        shared = StubTransport()
        shared.add_gateway(GW_URI)
        from dvote_sdk.gateway import set_transport
        set_transport(shared)
        gateway = DVoteGateway(GW_URI, [])
        await gateway.send_request({"method": "getInfo"})
        assert gateway.transport is shared


class TestSendRequest:
    """Tests for send_request."""

    @pytest.mark.asyncio
    async def test_success(self, gateway, transport, signer):
        """Test a signed request and its verified response."""
        transport.queue_reply(GW_URI, response={"ok": True, "censusId": "abc"})
        result = await gateway.send_request({"method": "addCensus", "censusId": "abc"}, signer)

        assert result["ok"] is True
        assert result["censusId"] == "abc"
        assert gateway.last_attempt.outcome is AttemptOutcome.OK

        sent = transport.interactions[-1].envelope
        assert sent["request"]["method"] == "addCensus"
        assert isinstance(sent["request"]["timestamp"], int)
        assert result["request"] == sent["id"]
        assert verify_json(sent["signature"], signer.public_key, sent["request"])

    @pytest.mark.asyncio
    async def test_unsigned_request(self, gateway, transport):
        """Test a request sent without a signer."""
        await gateway.send_request({"method": "getInfo"})
        assert transport.interactions[-1].envelope["signature"] == ""

    @pytest.mark.asyncio
    async def test_not_ready(self, transport):
        """Test that a client without URI refuses to send."""
        gateway = DVoteGateway("", ["file"], transport=transport)
        with pytest.raises(GatewayNotReadyError):
            await gateway.send_request({"method": "fetchFile"})
        assert transport.interactions == []

    @pytest.mark.asyncio
    async def test_unsupported_method(self, gateway, transport):
        """Methods outside the API list are refused before sending."""
        with pytest.raises(UnsupportedMethodError) as exc_info:
            await gateway.send_request({"method": "submitEnvelope"})
        assert exc_info.value.method == "submitEnvelope"
        assert transport.interactions == []

    @pytest.mark.asyncio
    async def test_missing_method(self, gateway):
        """Test a body without a method."""
        with pytest.raises(UnsupportedMethodError):
            await gateway.send_request({"censusId": "abc"})

    @pytest.mark.asyncio
    async def test_non_mapping_body(self, gateway):
        """Test a body that is not a mapping."""
        with pytest.raises(ValueError):
            await gateway.send_request("getInfo")

    @pytest.mark.asyncio
    async def test_missing_response_field(self, gateway, transport):
        """Test a reply without a response field."""
        transport.queue_reply(GW_URI, omit_response=True)
        with pytest.raises(InvalidResponseError):
            await gateway.send_request({"method": "addCensus"})
        assert gateway.last_attempt.outcome is AttemptOutcome.FAILED

    @pytest.mark.asyncio
    async def test_request_id_mismatch(self, gateway, transport):
        """Test a reply that echoes another request id."""
        transport.queue_reply(GW_URI, request_id="0123456789")
        with pytest.raises(RequestIdMismatchError) as exc_info:
            await gateway.send_request({"method": "addCensus"})
        assert exc_info.value.received == "0123456789"

    @pytest.mark.asyncio
    async def test_request_id_mismatch_with_valid_signature(self, gateway, transport):
        """The reply is correctly signed by the gateway but answers another request."""
        transport.queue_reply(GW_URI, response={"ok": True, "request": "ffffffffff"})
        with pytest.raises(RequestIdMismatchError):
            await gateway.send_request({"method": "addCensus"})

    @pytest.mark.asyncio
    async def test_bad_signature(self, gateway, transport):
        """Test a reply whose response was altered after signing."""
        transport.queue_reply(GW_URI, tamper=True)
        with pytest.raises(BadSignatureError):
            await gateway.send_request({"method": "addCensus"})

    @pytest.mark.asyncio
    async def test_missing_signature(self, gateway, transport):
        """Test a reply without a signature."""
        transport.queue_reply(GW_URI, signature="")
        with pytest.raises(BadSignatureError):
            await gateway.send_request({"method": "addCensus"})

    @pytest.mark.asyncio
    async def test_signature_from_other_key(self, transport, signer):
        """Test a reply signed by a different key."""
        gateway = DVoteGateway(GW_URI, ["census"], signer.public_key, transport=transport)
        with pytest.raises(BadSignatureError):
            await gateway.send_request({"method": "addCensus"})

    @pytest.mark.asyncio
    async def test_no_public_key_skips_verification(self, transport):
        """Replies are not verified when the gateway has no public key."""
        gateway = DVoteGateway(GW_URI, ["census"], transport=transport)
        transport.queue_reply(GW_URI, tamper=True)
        result = await gateway.send_request({"method": "addCensus"})
        assert result["tampered"] is True

    @pytest.mark.asyncio
    async def test_gateway_error_message(self, gateway, transport):
        """Test that the message of an ok false reply is raised."""
        transport.queue_reply(GW_URI, response={"ok": False, "message": "Invalid wallet"})
        with pytest.raises(GatewayRequestFailedError, match="Invalid wallet"):
            await gateway.send_request({"method": "addCensus"})

    @pytest.mark.asyncio
    async def test_gateway_error_without_message(self, gateway, transport):
        """Test an ok false reply without a message."""
        transport.queue_reply(GW_URI, response={"ok": False})
        with pytest.raises(GatewayRequestFailedError) as exc_info:
            await gateway.send_request({"method": "addCensus"})
        assert str(exc_info.value) == "There was an error while handling the request at the gateway"

    @pytest.mark.asyncio
    async def test_timeout(self, gateway, transport):
        """Test that a slow reply times out and is recorded."""
        transport.queue_reply(GW_URI, delay_ms=500)
        with pytest.raises(GatewayTimeoutError):
            await gateway.send_request({"method": "addCensus"}, timeout_ms=20)
        assert gateway.has_timed_out_last_request
        assert gateway.last_attempt.outcome is AttemptOutcome.TIMEOUT

    @pytest.mark.asyncio
    async def test_default_timeout_from_environment(self, gateway, transport, monkeypatch):
        """Test that the request timeout comes from the environment."""
        monkeypatch.setenv("DVOTE_REQUEST_TIMEOUT_MS", "20")
        transport.queue_reply(GW_URI, delay_ms=500)
        with pytest.raises(GatewayTimeoutError):
            await gateway.send_request({"method": "addCensus"})

    @pytest.mark.asyncio
    async def test_success_after_timeout_clears_flag(self, gateway, transport):
        """A later success clears the timed out flag."""
        transport.queue_reply(GW_URI, delay_ms=500)
        with pytest.raises(GatewayTimeoutError):
            await gateway.send_request({"method": "addCensus"}, timeout_ms=20)
        await gateway.send_request({"method": "addCensus"})
        assert not gateway.has_timed_out_last_request
        assert [a.number for a in gateway.attempts] == [1, 2]

    @pytest.mark.asyncio
    async def test_connection_error(self, transport):
        """Test that connection errors are recorded as failed."""
        gateway = DVoteGateway("http://unknown/dvote", ["census"], transport=transport)
        with pytest.raises(GatewayConnectionError):
            await gateway.send_request({"method": "addCensus"})
        assert gateway.last_attempt.outcome is AttemptOutcome.FAILED

    @pytest.mark.asyncio
    async def test_unexpected_transport_error_recorded(self, gateway, transport):
        """Errors outside the gateway hierarchy still count as a failed attempt."""
        transport.queue_reply(GW_URI, error=ValueError("Unsupported URI scheme"))
        with pytest.raises(ValueError):
            await gateway.send_request({"method": "addCensus"})
        assert gateway.last_attempt.outcome is AttemptOutcome.FAILED
        assert not gateway.has_timed_out_last_request

    @pytest.mark.asyncio
    async def test_replayed_response_with_appended_field(self, transport, gateway_signer):
        """An old signed response followed by a forged second `response` key is rejected."""

        class ReplayTransport(StubTransport):
            async def post(self, uri, payload, timeout_ms=None):
                request_id = json.loads(payload)["id"]
                old = b'{"message":"stale","ok":false,"request":"old-request-id"}'
                signature = gateway_signer.sign_message(old)
                forged = b'{"ok":true,"request":"%s"}' % request_id.encode()
                return b'{"id":"%s","response":%s,"signature":"%s","response":%s}' % (
                    request_id.encode(), old, signature.encode(), forged
                )

        gateway = DVoteGateway(GW_URI, ["census"], gateway_signer.public_key, transport=ReplayTransport())
        with pytest.raises(InvalidResponseError):
            await gateway.send_request({"method": "addCensus"})
        assert gateway.last_attempt.outcome is AttemptOutcome.FAILED

    @pytest.mark.asyncio
    async def test_checks_use_the_signed_response(self, transport, gateway_signer):
        """A signed response for another request is refused even if the envelope id matches."""

        class StaleTransport(StubTransport):
            async def post(self, uri, payload, timeout_ms=None):
                request_id = json.loads(payload)["id"]
                old = b'{"ok":true,"request":"old-request-id"}'
                signature = gateway_signer.sign_message(old)
                return b'{"id":"%s","response":%s,"signature":"%s"}' % (
                    request_id.encode(), old, signature.encode()
                )

        gateway = DVoteGateway(GW_URI, ["census"], gateway_signer.public_key, transport=StaleTransport())
        with pytest.raises(RequestIdMismatchError) as exc_info:
            await gateway.send_request({"method": "addCensus"})
        assert exc_info.value.received == "old-request-id"

    @pytest.mark.asyncio
    async def test_non_json_reply(self, gateway):
        """Test a reply that is not JSON."""
        class BrokenTransport(StubTransport):
            async def post(self, uri, payload, timeout_ms=None):
                return b"<html>502</html>"

        gateway = DVoteGateway(GW_URI, ["census"], transport=BrokenTransport())
        with pytest.raises(InvalidResponseError):
            await gateway.send_request({"method": "addCensus"})

    @pytest.mark.asyncio
    async def test_reply_bytes_are_verified_as_received(self, transport, gateway_signer):
        """A gateway signing its own (non canonical) formatting is accepted."""

        class SpacedTransport(StubTransport):
            async def post(self, uri, payload, timeout_ms=None):
                request_id = json.loads(payload)["id"]
                response = ('{ "request": "%s", "ok": true, "zeta": 1, "alpha": 2 }' % request_id).encode()
                signature = gateway_signer.sign_message(response)
                return b'{"id": "%s", "response": %s, "signature": "%s"}' % (
                    request_id.encode(), response, signature.encode()
                )

        gateway = DVoteGateway(GW_URI, ["census"], gateway_signer.public_key, transport=SpacedTransport())
        result = await gateway.send_request({"method": "addCensus"})
        assert result == {"request": result["request"], "ok": True, "zeta": 1, "alpha": 2}


class TestStatus:
    """Tests for check_status, get_info, init and get_chain_id."""

    @pytest.mark.asyncio
    async def test_check_status_updates_metrics(self, gateway, transport):
        """Test that a successful check updates the metrics."""
        transport.gateways[GW_URI].apis = ["file", "vote"]
        await gateway.check_status(1000)

        assert gateway.is_ready
        assert gateway.health == 90
        assert gateway.supported_apis == ["file", "vote"]
        assert gateway.response_time is not None and gateway.response_time >= 0
        assert 0 <= gateway.weight <= 100
        assert gateway.supports_method("submitEnvelope")
        assert not gateway.supports_method("addCensus")

    @pytest.mark.asyncio
    async def test_failed_check_keeps_metrics(self, gateway, transport):
        """A failed check leaves the previous metrics untouched."""
        await gateway.check_status(1000)
        before = (gateway.health, gateway.weight, gateway.response_time, gateway.supported_apis)

        transport.gateways[GW_URI].info_response = {"ok": True, "apiList": "file", "health": 10}
        with pytest.raises(InvalidResponseError):
            await gateway.check_status(1000)
        assert (gateway.health, gateway.weight, gateway.response_time, gateway.supported_apis) == before
        assert gateway.last_attempt.outcome is AttemptOutcome.FAILED

    @pytest.mark.asyncio
    async def test_timed_out_check_keeps_metrics(self, gateway, transport):
        """A timed out check leaves the previous metrics untouched."""
        await gateway.check_status(1000)
        weight = gateway.weight
        transport.gateways[GW_URI].delay_ms = 500
        with pytest.raises(GatewayTimeoutError):
            await gateway.check_status(20)
        assert gateway.weight == weight
        assert gateway.has_timed_out_last_request

    @pytest.mark.asyncio
    async def test_get_info(self, gateway):
        """Test reading the gateway status."""
        status = await gateway.get_info()
        assert status.api_list == ["file", "census"]
        assert status.health == 90
        assert status.chain_id == "goerli"

    @pytest.mark.asyncio
    async def test_get_info_health_must_be_a_number(self, gateway, transport):
        """Test that a non numeric health is refused."""
        transport.gateways[GW_URI].info_response = {"ok": True, "apiList": [], "health": "good"}
        with pytest.raises(InvalidResponseError):
            await gateway.get_info()

    @pytest.mark.asyncio
    async def test_get_chain_id_is_cached(self, gateway, transport):
        """Test that the chain id is asked for once."""
        assert await gateway.get_chain_id() == "goerli"
        assert await gateway.get_chain_id() == "goerli"
        assert len(transport.requests_to(GW_URI)) == 1

    @pytest.mark.asyncio
    async def test_get_chain_id_missing(self, transport):
        """Test a gateway that reports no chain id."""
        transport.add_gateway("http://gw2/dvote")
        gateway = DVoteGateway("http://gw2/dvote", [], transport=transport)
        with pytest.raises(InvalidResponseError):
            await gateway.get_chain_id()

    @pytest.mark.asyncio
    async def test_init_checks_status_once(self, gateway, transport):
        """Test that init runs a single status check."""
        await gateway.init(["census"])
        await gateway.init(["census", "file"])
        assert gateway.is_ready
        assert len(transport.requests_to(GW_URI)) == 1

    @pytest.mark.asyncio
    async def test_init_missing_api(self, gateway):
        """Test init with an API the gateway lacks."""
        with pytest.raises(UnsupportedMethodError, match="vote"):
            await gateway.init(["vote"])

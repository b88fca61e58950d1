"""
Pytest fixtures for the DVote SDK tests.
"""
import pytest

from dvote_sdk.gateway import set_transport
from dvote_sdk.gateway._rate_limited_log import reset_rate_limited_log
from dvote_sdk.gateway.stub_transport import StubTransport
from dvote_sdk.signing import LocalSigner

from test_helpers.stubs import (
    BOOTNODE_URI,
    GATEWAY_PRIV_KEY,
    TEST_PRIV_KEY,
    FakeChainRPC,
    FakeChainRPCRegistry,
    make_document,
)


@pytest.fixture(autouse=True)
def _isolated_state(monkeypatch):
    """Shared caches and environment overrides must not leak between tests."""
    monkeypatch.delenv("DVOTE_DISCOVERY_TIMEOUT_MS", raising=False)
    monkeypatch.delenv("DVOTE_REQUEST_TIMEOUT_MS", raising=False)
    reset_rate_limited_log()
    set_transport(None)
    yield
    set_transport(None)


@pytest.fixture
def signer():
    """Client wallet"""
    return LocalSigner(TEST_PRIV_KEY)


@pytest.fixture
def gateway_signer():
    """Key the simulated gateways sign with"""
    return LocalSigner(GATEWAY_PRIV_KEY)


@pytest.fixture
def stub_transport():
    """Gateway simulator signing its replies with GATEWAY_PRIV_KEY"""
    return StubTransport(GATEWAY_PRIV_KEY)


@pytest.fixture
def fake_rpc():
    return FakeChainRPC()


@pytest.fixture
def rpc_registry():
    """rpc_factory giving healthy fake chain RPCs unless configured otherwise"""
    return FakeChainRPCRegistry()


@pytest.fixture
def bootnode_document():
    return make_document()


@pytest.fixture
def served_bootnode(stub_transport, bootnode_document):
    """Bootnode document served at BOOTNODE_URI with every gateway up"""
    stub_transport.add_document(BOOTNODE_URI, bootnode_document)
    for entries in bootnode_document.values():
        for entry in entries["dvote"]:
            stub_transport.add_gateway(entry["uri"], apis=entry["apis"])
    return stub_transport

"""Pytest configuration and fixtures."""

import os
from unittest.mock import AsyncMock

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
os.environ["ROUTING_API_URL"] = "https://routing.test/v1"
os.environ["CLIENT_ID"] = "crossroute-tests"

from crossroute.api import RoutingClient
from crossroute.config import Settings
from crossroute.errors import SimulationFailedError
from crossroute.models import BroadcastResult, SignerData, TrackTxResponse, TxStatusResponse
from crossroute.registry import ChainRegistry
from crossroute.signing.local import LocalAminoSigner, LocalDirectSigner

TEST_PRIVATE_KEY = bytes.fromhex("01" * 32)
OTHER_PRIVATE_KEY = bytes.fromhex("02" * 32)


class FakeChainClient:
    """In-memory stand-in for CosmosChainClient."""

    def __init__(
        self,
        chain_id: str,
        rest_url: str = "",
        account_number: int = 7,
        sequence: int = 3,
        gas_used: int = 100000,
        balances: dict = None,
        height: int = 5000,
        tx_hash: str = "",
        simulate_failures: int = 0,
    ):
        self.chain_id = chain_id
        self.rest_url = rest_url
        self.account_number = account_number
        self.sequence = sequence
        self.gas_used = gas_used
        self.balances = balances or {}
        self.height = height
        self.tx_hash = tx_hash or f"{chain_id.upper()}HASH"
        self.simulate_failures = simulate_failures
        self.opened = 0
        self.closed = 0
        self.simulated: list[bytes] = []
        self.broadcasted: list[bytes] = []

    async def __aenter__(self):
        self.opened += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed += 1

    async def get_signer_data(self, address: str) -> SignerData:
        return SignerData(self.account_number, self.sequence, self.chain_id)

    async def get_balance(self, address: str, denom: str) -> int:
        return self.balances.get(denom, 0)

    async def latest_height(self) -> int:
        return self.height

    async def simulate(self, tx_bytes: bytes) -> int:
        self.simulated.append(tx_bytes)
        if self.simulate_failures > 0:
            self.simulate_failures -= 1
            raise SimulationFailedError(self.chain_id, 400, "insufficient funds")
        return self.gas_used

    async def broadcast(self, tx_bytes: bytes) -> BroadcastResult:
        self.broadcasted.append(tx_bytes)
        return BroadcastResult(chain_id=self.chain_id, tx_hash=self.tx_hash)


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, poll_interval_seconds=0.01)


@pytest.fixture
def registry() -> ChainRegistry:
    """The bundled chain registry."""
    return ChainRegistry.load()


@pytest.fixture
def direct_signer() -> LocalDirectSigner:
    return LocalDirectSigner(TEST_PRIVATE_KEY, prefix="cosmos")


@pytest.fixture
def amino_signer() -> LocalAminoSigner:
    return LocalAminoSigner(TEST_PRIVATE_KEY, prefix="cosmos")


@pytest.fixture
def chain_clients():
    """Factory registry of FakeChainClients, one per chain id."""
    clients: dict[str, FakeChainClient] = {}

    def factory(chain_id: str, rest_url: str) -> FakeChainClient:
        if chain_id not in clients:
            clients[chain_id] = FakeChainClient(chain_id, rest_url)
        return clients[chain_id]

    def add(chain_id: str, **kwargs) -> FakeChainClient:
        clients[chain_id] = FakeChainClient(chain_id, **kwargs)
        return clients[chain_id]

    factory.clients = clients
    factory.add = add
    return factory


@pytest.fixture
def routing_client() -> AsyncMock:
    """Routing client mock whose transactions complete on the first poll."""
    client = AsyncMock(spec=RoutingClient)
    client.track_transaction.side_effect = lambda chain_id, tx_hash: TrackTxResponse(
        tx_hash=tx_hash, explorer_link=f"https://explorer.test/{chain_id}/{tx_hash}"
    )
    client.transaction_status.return_value = TxStatusResponse(
        status="STATE_COMPLETED", state="STATE_COMPLETED_SUCCESS"
    )
    return client

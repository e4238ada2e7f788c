"""Cosmos chain REST (LCD) client.

One client is opened per leg for account-state queries and closed right
after; nothing is pooled across legs.
"""

import base64
import logging
from typing import Optional

import httpx

from crossroute.errors import BroadcastRejectedError, PreconditionError, SimulationFailedError
from crossroute.models import BroadcastResult, SignerData

logger = logging.getLogger(__name__)

BROADCAST_MODE_SYNC = "BROADCAST_MODE_SYNC"


class CosmosChainClient:
    """Async REST client for one Cosmos-SDK chain."""

    def __init__(
        self,
        chain_id: str,
        rest_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.chain_id = chain_id
        self.rest_url = rest_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=self.rest_url, timeout=timeout)

    async def __aenter__(self) -> "CosmosChainClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _json(self, response: httpx.Response) -> dict:
        if response.status_code >= 400:
            logger.warning(
                f"{self.chain_id} REST {response.request.method} {response.request.url.path} "
                f"returned {response.status_code}: {response.text[:300]}"
            )
            response.raise_for_status()
        return response.json()

    # ======================
    # Account state
    # ======================

    async def get_signer_data(self, address: str) -> SignerData:
        """Fetch account number and current sequence for an address."""
        response = await self._client.get(f"/cosmos/auth/v1beta1/accounts/{address}")
        if response.status_code == 404:
            raise PreconditionError(
                f"Account {address} does not exist on {self.chain_id}. "
                f"Send some tokens there before trying to query sequence."
            )
        data = await self._json(response)
        account = unwrap_base_account(data.get("account", {}))

        signer_data = SignerData(
            account_number=int(account.get("account_number", 0)),
            sequence=int(account.get("sequence", 0)),
            chain_id=self.chain_id,
        )
        logger.debug(
            f"{self.chain_id} account {address}: number={signer_data.account_number} "
            f"sequence={signer_data.sequence}"
        )
        return signer_data

    async def get_balance(self, address: str, denom: str) -> int:
        """Balance of one denom, in base units."""
        response = await self._client.get(
            f"/cosmos/bank/v1beta1/balances/{address}/by_denom",
            params={"denom": denom},
        )
        data = await self._json(response)
        balance = data.get("balance") or {}
        return int(balance.get("amount", "0"))

    async def latest_height(self) -> int:
        """Height of the latest committed block."""
        response = await self._client.get("/cosmos/base/tendermint/v1beta1/blocks/latest")
        data = await self._json(response)
        block = data.get("sdk_block") or data.get("block") or {}
        return int(block.get("header", {}).get("height", 0))

    # ======================
    # Transactions
    # ======================

    async def simulate(self, tx_bytes: bytes) -> int:
        """Simulate a transaction and return the gas used.

        Raises:
            SimulationFailedError: The chain refused to execute the simulation
        """
        response = await self._client.post(
            "/cosmos/tx/v1beta1/simulate",
            json={"tx_bytes": base64.b64encode(tx_bytes).decode()},
        )
        if 400 <= response.status_code < 500:
            log = _error_message(response)
            logger.warning(f"{self.chain_id} simulation rejected ({response.status_code}): {log}")
            raise SimulationFailedError(self.chain_id, response.status_code, log)
        data = await self._json(response)
        gas_used = int(data.get("gas_info", {}).get("gas_used", 0))
        logger.debug(f"{self.chain_id} simulation used {gas_used} gas")
        return gas_used

    async def broadcast(self, tx_bytes: bytes) -> BroadcastResult:
        """Broadcast signed bytes (sync mode: waits for CheckTx only).

        Raises:
            BroadcastRejectedError: CheckTx returned a non-zero code
        """
        response = await self._client.post(
            "/cosmos/tx/v1beta1/txs",
            json={"tx_bytes": base64.b64encode(tx_bytes).decode(), "mode": BROADCAST_MODE_SYNC},
        )
        data = await self._json(response)
        tx_response = data.get("tx_response", {})
        tx_hash = tx_response.get("txhash", "")
        code = int(tx_response.get("code", 0))

        if code != 0:
            raise BroadcastRejectedError(self.chain_id, tx_hash, code, tx_response.get("raw_log", ""))

        height = int(tx_response.get("height", 0)) or None
        return BroadcastResult(chain_id=self.chain_id, tx_hash=tx_hash, height=height, raw=tx_response)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:300]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)
    return str(data)


def unwrap_base_account(account: dict) -> dict:
    """Find the BaseAccount fields inside vesting/module/eth account wrappers."""
    if "account_number" in account:
        return account
    for key in ("base_account", "base_vesting_account"):
        if key in account:
            return unwrap_base_account(account[key])
    return account

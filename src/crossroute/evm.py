"""EVM signer capability, ERC-20 approvals and a web3-backed signer."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from crossroute.endpoints import EndpointResolver
from crossroute.errors import TransactionRevertedError
from crossroute.models import RequiredApproval

logger = logging.getLogger(__name__)

ERC20_ABI = [
    {
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@dataclass(frozen=True)
class TxReceipt:
    """Mined transaction receipt (status 1 = success, 0 = reverted)."""
    tx_hash: str
    status: int
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class EVMSigner(ABC):
    """EVM wallet capability: account, chain, contract reads/writes, sends, receipts."""

    @abstractmethod
    async def get_address(self) -> str:
        pass

    @abstractmethod
    async def get_chain_id(self) -> int:
        pass

    @abstractmethod
    async def read_contract(self, address: str, abi: list, function_name: str, args: Sequence[Any]) -> Any:
        pass

    @abstractmethod
    async def write_contract(
        self,
        address: str,
        abi: list,
        function_name: str,
        args: Sequence[Any],
        value: int = 0,
    ) -> str:
        """Send a contract call transaction, returning its hash."""
        pass

    @abstractmethod
    async def send_transaction(self, to: str, data: str, value: int = 0) -> str:
        """Send a raw call (to + calldata + value), returning its hash."""
        pass

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        pass


async def ensure_approvals(
    signer: EVMSigner,
    chain_id: str,
    approvals: Sequence[RequiredApproval],
) -> list[str]:
    """Satisfy every required ERC-20 allowance, in order.

    Reads the current allowance; when it is below the required amount, sends an
    approval for that amount and waits for its receipt.

    Returns:
        Hashes of the approval transactions sent

    Raises:
        TransactionRevertedError: An approval reverted
    """
    owner = await signer.get_address()
    sent = []

    for approval in approvals:
        allowance = await signer.read_contract(
            approval.token_contract,
            ERC20_ABI,
            "allowance",
            [owner, approval.spender],
        )
        if int(allowance) >= approval.amount_int:
            logger.debug(f"Allowance {allowance} for {approval.spender} on {approval.token_contract} sufficient")
            continue

        logger.info(
            f"Approving {approval.amount} of {approval.token_contract} for {approval.spender} on chain {chain_id}"
        )
        tx_hash = await signer.write_contract(
            approval.token_contract,
            ERC20_ABI,
            "approve",
            [approval.spender, approval.amount_int],
        )
        receipt = await signer.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            raise TransactionRevertedError(chain_id, tx_hash, "approval")
        sent.append(tx_hash)

    return sent


class Web3EVMSigner(EVMSigner):
    """EVM signer backed by a local eth-account key and an async web3 provider."""

    def __init__(
        self,
        private_key: str,
        rpc_url: str,
        receipt_timeout: float = 300.0,
        web3: Optional[Any] = None,
    ):
        from eth_account import Account
        from web3 import AsyncWeb3

        self.rpc_url = rpc_url
        self.receipt_timeout = receipt_timeout
        self.account = Account.from_key(private_key)
        self.web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))

    @classmethod
    async def connect(
        cls,
        private_key: str,
        chain_id: str,
        resolver: EndpointResolver,
        receipt_timeout: float = 300.0,
    ) -> "Web3EVMSigner":
        """Signer for an EVM chain, using the resolver's RPC endpoint for it."""
        rpc_url = await resolver.rpc(chain_id)
        logger.debug(f"Connecting EVM signer for chain {chain_id} to {rpc_url}")
        return cls(private_key, rpc_url, receipt_timeout=receipt_timeout)

    async def get_address(self) -> str:
        return self.account.address

    async def get_chain_id(self) -> int:
        return await self.web3.eth.chain_id

    def _contract(self, address: str, abi: list):
        return self.web3.eth.contract(address=self.web3.to_checksum_address(address), abi=abi)

    async def read_contract(self, address: str, abi: list, function_name: str, args: Sequence[Any]) -> Any:
        function = self._contract(address, abi).get_function_by_name(function_name)
        return await function(*self._checksum_args(args)).call()

    async def write_contract(
        self,
        address: str,
        abi: list,
        function_name: str,
        args: Sequence[Any],
        value: int = 0,
    ) -> str:
        function = self._contract(address, abi).get_function_by_name(function_name)
        tx = await function(*self._checksum_args(args)).build_transaction(await self._base_params(value))
        return await self._sign_and_send(tx)

    async def send_transaction(self, to: str, data: str, value: int = 0) -> str:
        tx = await self._base_params(value)
        tx["to"] = self.web3.to_checksum_address(to)
        tx["data"] = data
        tx["gas"] = await self.web3.eth.estimate_gas(tx)
        tx["gasPrice"] = await self.web3.eth.gas_price
        return await self._sign_and_send(tx)

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        receipt = await self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        return TxReceipt(tx_hash=tx_hash, status=receipt["status"], block_number=receipt.get("blockNumber"))

    async def _base_params(self, value: int) -> dict:
        return {
            "from": self.account.address,
            "value": value,
            "nonce": await self.web3.eth.get_transaction_count(self.account.address, "pending"),
            "chainId": await self.web3.eth.chain_id,
        }

    async def _sign_and_send(self, tx: dict) -> str:
        signed = self.account.sign_transaction(tx)
        # eth-account >= 0.13 renamed rawTransaction to raw_transaction
        raw_tx = getattr(signed, "raw_transaction", None) or signed.rawTransaction
        tx_hash = await self.web3.eth.send_raw_transaction(raw_tx)
        return self.web3.to_hex(tx_hash)

    def _checksum_args(self, args: Sequence[Any]) -> list:
        return [
            self.web3.to_checksum_address(arg)
            if isinstance(arg, str) and arg.startswith("0x") and len(arg) == 42
            else arg
            for arg in args
        ]

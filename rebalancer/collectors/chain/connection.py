"""JSON-RPC connection and shared signer using web3."""
import asyncio
import logging
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

logger = logging.getLogger(__name__)


class SubmissionError(Exception):
    """Transaction could not be submitted.

    Attributes:
        stage: "prepare", "estimate", "sign" or "send"
        cause: Underlying exception from web3 or the node
    """

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause


class ChainConnection:
    """Manages the JSON-RPC node connection and the shared signing wallet.

    One instance is shared by every session. Nonce assignment, signing
    and broadcast happen under a single lock so concurrent executors
    never reuse a nonce. Receipt waits happen outside the lock.

    Attributes:
        rpc_url: JSON-RPC endpoint
        chain_id: Expected chain id (read from the node if None)
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        chain_id: int | None = None,
        gas_buffer: float = 1.2,
        w3: AsyncWeb3 | None = None,
    ):
        """Initialize connection manager.

        Args:
            rpc_url: JSON-RPC endpoint URL
            private_key: Hex private key of the signing wallet
            chain_id: Expected chain id (default: ask the node)
            gas_buffer: Multiplier applied to gas estimates
            w3: Preconfigured AsyncWeb3 instance (tests)
        """
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.gas_buffer = gas_buffer

        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._account: LocalAccount = Account.from_key(private_key)
        self._nonce_lock = asyncio.Lock()
        self._next_nonce: int | None = None

        logger.debug(
            "INIT: ChainConnection initialized",
            extra={
                "extra_data": {
                    "action": "connection_init",
                    "rpc_url": rpc_url,
                    "chain_id": chain_id,
                    "signer": self._account.address,
                }
            },
        )

    @property
    def w3(self) -> AsyncWeb3:
        """Get the underlying AsyncWeb3 client."""
        return self._w3

    @property
    def address(self) -> str:
        """Address of the signing wallet."""
        return self._account.address

    async def is_connected(self) -> bool:
        return await self._w3.is_connected()

    async def connect(self) -> bool:
        """Reach the node and verify the chain id.

        Returns:
            True if the node answered with the expected chain id
        """
        logger.info(f"Connecting to JSON-RPC node at {self.rpc_url}...")

        try:
            node_chain_id = await self._w3.eth.chain_id
        except Exception as e:
            logger.error(f"Failed to reach JSON-RPC node: {e}")
            return False

        if self.chain_id is not None and node_chain_id != self.chain_id:
            logger.error(f"Chain id mismatch: node={node_chain_id} expected={self.chain_id}")
            return False

        self.chain_id = node_chain_id
        logger.info(f"Connected to chain {node_chain_id} as {self.address}")
        return True

    def contract(self, address: str, abi: list[dict[str, Any]]):
        """Bind a contract at address."""
        return self._w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def _fee_fields(self) -> dict[str, int]:
        """EIP-1559 fee fields, or legacy gasPrice when the chain has no base fee."""
        block = await self._w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            return {"gasPrice": await self._w3.eth.gas_price}

        priority_fee = await self._w3.eth.max_priority_fee
        return {
            "maxPriorityFeePerGas": priority_fee,
            "maxFeePerGas": base_fee * 2 + priority_fee,
        }

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        """Fill in nonce, gas and fees, sign and broadcast.

        Args:
            tx: Partial transaction (to, data, value)

        Returns:
            Transaction hash as 0x-prefixed hex

        Raises:
            SubmissionError: With the stage that failed
        """
        async with self._nonce_lock:
            try:
                if self.chain_id is None:
                    self.chain_id = await self._w3.eth.chain_id
                if self._next_nonce is None:
                    self._next_nonce = await self._w3.eth.get_transaction_count(
                        self.address, "pending"
                    )
            except Exception as e:
                raise SubmissionError("prepare", e) from e

            tx = dict(tx)
            tx["from"] = self.address
            tx["nonce"] = self._next_nonce
            tx["chainId"] = self.chain_id
            tx.setdefault("value", 0)

            try:
                estimated = await self._w3.eth.estimate_gas(tx)
                tx["gas"] = int(estimated * self.gas_buffer)
                tx.update(await self._fee_fields())
            except Exception as e:
                # Nonce unused; the node may also have rejected it as stale
                self._next_nonce = None
                raise SubmissionError("estimate", e) from e

            try:
                signed = self._account.sign_transaction(tx)
            except Exception as e:
                raise SubmissionError("sign", e) from e

            try:
                tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                self._next_nonce = None
                raise SubmissionError("send", e) from e

            self._next_nonce += 1

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"Sent transaction {tx_hash_hex} (nonce={tx['nonce']})")
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: float, poll_latency: float = 1.0):
        """Wait for a transaction receipt.

        Raises:
            web3.exceptions.TimeExhausted: If not mined within timeout
        """
        return await self._w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=timeout, poll_latency=poll_latency
        )

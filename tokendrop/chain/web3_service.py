# tokendrop/chain/web3_service.py
"""
web3.py implementation of the TransactionService.

All RPC calls go through AsyncWeb3, so a pending confirmation only suspends
the delivery task waiting on it. Nonce allocation, signing and submission
for the shared server account happen under one asyncio.Lock; waiting for
the receipt happens outside it, so concurrent deliveries still overlap.
"""
import asyncio
import logging
from typing import Any, Dict

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3

from tokendrop.chain.abi import ERC20_ABI, SWAP_ROUTER02_ABI
from tokendrop.chain.service import TransactionFailedError, TransactionService
from tokendrop.core.config import Settings

logger = logging.getLogger(__name__)


def to_checksum(address: str) -> str:
    """Checksum an address regardless of the casing it was given in."""
    return AsyncWeb3.to_checksum_address(address.lower())


class Web3TransactionService(TransactionService):
    """
    Submits transactions from the server's signing account.

    Args:
        w3: Connected AsyncWeb3 instance
        private_key: Hex private key of the server account
        receipt_timeout: Seconds to wait for each transaction receipt
    """

    def __init__(self, w3: AsyncWeb3, private_key: str, receipt_timeout: float = 120.0):
        self.w3 = w3
        self._account = Account.from_key(private_key)
        self._receipt_timeout = receipt_timeout
        self._submit_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Web3TransactionService":
        provider = AsyncHTTPProvider(str(settings.RPC_URL), request_kwargs={"timeout": 30})
        return cls(
            w3=AsyncWeb3(provider),
            private_key=settings.PRIVATE_KEY.get_secret_value(),
            receipt_timeout=settings.TX_RECEIPT_TIMEOUT_SECONDS,
        )

    @property
    def address(self) -> str:
        return self._account.address

    def _erc20(self, token: str):
        return self.w3.eth.contract(address=to_checksum(token), abi=ERC20_ABI)

    async def balance_of(self, token: str, owner: str) -> int:
        return await self._erc20(token).functions.balanceOf(to_checksum(owner)).call()

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        return await self._erc20(token).functions.allowance(
            to_checksum(owner), to_checksum(spender)
        ).call()

    async def approve(self, token: str, spender: str, amount: int) -> str:
        call = self._erc20(token).functions.approve(to_checksum(spender), amount)
        return await self._submit(call, "approve")

    async def transfer(self, token: str, to: str, amount: int) -> str:
        call = self._erc20(token).functions.transfer(to_checksum(to), amount)
        return await self._submit(call, "transfer")

    async def swap_exact_input_single(
        self,
        router: str,
        token_in: str,
        token_out: str,
        fee: int,
        amount_in: int,
        recipient: str,
    ) -> str:
        contract = self.w3.eth.contract(address=to_checksum(router), abi=SWAP_ROUTER02_ABI)
        params = {
            "tokenIn": to_checksum(token_in),
            "tokenOut": to_checksum(token_out),
            "fee": fee,
            "recipient": to_checksum(recipient),
            "amountIn": amount_in,
            "amountOutMinimum": 0,
            "sqrtPriceLimitX96": 0,
        }
        return await self._submit(contract.functions.exactInputSingle(params), f"swap (fee {fee})")

    async def mint(self, token: str, to: str, amount: int) -> str:
        call = self._erc20(token).functions.mint(to_checksum(to), amount)
        return await self._submit(call, "mint")

    async def _submit(self, call: Any, operation: str) -> str:
        """
        Sign and send a contract call, then wait for its receipt.

        Raises:
            TransactionFailedError: If the transaction reverted
            web3.exceptions.TimeExhausted: If no receipt arrived in time
        """
        async with self._submit_lock:
            nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
            tx: Dict[str, Any] = await call.build_transaction({
                "from": self.address,
                "nonce": nonce,
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

        tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info(f"{operation} submitted: {tx_hash_hex} (nonce {nonce})")

        receipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self._receipt_timeout
        )
        if receipt["status"] != 1:
            raise TransactionFailedError(tx_hash_hex, operation)

        logger.info(f"{operation} confirmed: {tx_hash_hex}")
        return tx_hash_hex

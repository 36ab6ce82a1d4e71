# tokendrop/chain/service.py
"""
Transaction submission interface used by the delivery orchestrator.

The server's signing account is a shared resource; every component that
needs to read balances or submit transactions goes through one injected
TransactionService, so tests can swap in a fake and submissions from this
account can be serialized in one place.

Write operations return only once the transaction is confirmed and raise
if it reverted or confirmation timed out.
"""
from abc import ABC, abstractmethod


class TransactionFailedError(Exception):
    """A transaction was mined but reverted."""

    def __init__(self, tx_hash: str, operation: str):
        super().__init__(f"{operation} reverted in transaction {tx_hash}")
        self.tx_hash = tx_hash
        self.operation = operation


class TransactionService(ABC):
    """Read/write access to ERC20 tokens and a Uniswap V3 router from the server account."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed address of the signing account."""

    @abstractmethod
    async def balance_of(self, token: str, owner: str) -> int:
        """ERC20 balanceOf in smallest units."""

    @abstractmethod
    async def allowance(self, token: str, owner: str, spender: str) -> int:
        """ERC20 allowance in smallest units."""

    @abstractmethod
    async def approve(self, token: str, spender: str, amount: int) -> str:
        """Approve spender and wait for confirmation. Returns the transaction hash."""

    @abstractmethod
    async def transfer(self, token: str, to: str, amount: int) -> str:
        """Transfer from the server account and wait for confirmation."""

    @abstractmethod
    async def swap_exact_input_single(
        self,
        router: str,
        token_in: str,
        token_out: str,
        fee: int,
        amount_in: int,
        recipient: str,
    ) -> str:
        """Swap an exact input amount through a single V3 pool and wait for confirmation."""

    @abstractmethod
    async def mint(self, token: str, to: str, amount: int) -> str:
        """Call the token's privileged mint and wait for confirmation."""

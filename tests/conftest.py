# tests/conftest.py
"""
Shared fixtures: a complete test environment, an in-memory transaction
service and an X-PAYMENT header builder.
"""
import json
import os
from base64 import b64encode
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Settings are read from the environment; set a complete one before the
# application modules are imported.
TEST_ENV = {
    "WALLET_ADDRESS": "0x209693bc6afc0c5328ba36faf03c514ef312287c",
    "PUBLIC_DOMAIN": "https://www.zorro.team",
    "RPC_URL": "http://localhost:8545",
    "PRIVATE_KEY": "0x" + "11" * 32,
    "USDC_ADDRESS": "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913",
    "CONTRACT_ADDRESS": "0x" + "ab" * 20,
    "WETH_ADDRESS": "0x4200000000000000000000000000000000000006",
    "V3_SWAP_ROUTER02_ADDRESS": "0x2626664c2603336e57b271c5c0b26f421741e481",
    "FACILITATOR_URL": "http://facilitator.test",
}
for _key, _value in TEST_ENV.items():
    os.environ[_key] = _value
os.environ.pop("AUTO_REFUND", None)
os.environ.pop("CANONICAL_HOST_REDIRECT", None)

from tokendrop.chain.service import TransactionService  # noqa: E402
from tokendrop.core.config import get_settings  # noqa: E402
from tokendrop.delivery.models import DeliveryPlan  # noqa: E402
from tokendrop.x402.audit import configure_audit_log  # noqa: E402

SERVER_ADDRESS = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"
PAYER_ADDRESS = "0xAb8483F64d9C6d1EcF9b849Ae677dD3315835cb2"
RESOURCE_URL = "https://www.zorro.team/api/buy"


class FakeTransactionService(TransactionService):
    """
    In-memory TransactionService.

    Every call is recorded in ``calls`` as (operation, args). Failures are
    injected per operation through ``failures``; swap outcomes per fee tier
    through ``swap_outputs`` (an int credited to the recipient, or an
    exception to raise). Tiers without an entry raise.
    """

    def __init__(self, address: str = SERVER_ADDRESS):
        self._address = address
        self.balances: Dict[Tuple[str, str], int] = {}
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self.failures: Dict[str, Exception] = {}
        self.swap_outputs: Dict[int, Any] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    @property
    def address(self) -> str:
        return self._address

    def set_balance(self, token: str, owner: str, amount: int) -> None:
        self.balances[(token.lower(), owner.lower())] = amount

    def operations(self, *names: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [call for call in self.calls if call[0] in names]

    @property
    def writes(self) -> List[str]:
        return [name for name, _ in self.calls if name not in ("balance_of", "allowance")]

    def _tx(self) -> str:
        return "0x" + format(len(self.calls), "064x")

    def _raise_if_failing(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    async def balance_of(self, token: str, owner: str) -> int:
        self.calls.append(("balance_of", {"token": token, "owner": owner}))
        return self.balances.get((token.lower(), owner.lower()), 0)

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        self.calls.append(("allowance", {"token": token, "owner": owner, "spender": spender}))
        return self.allowances.get((token.lower(), owner.lower(), spender.lower()), 0)

    async def approve(self, token: str, spender: str, amount: int) -> str:
        self.calls.append(("approve", {"token": token, "spender": spender, "amount": amount}))
        self._raise_if_failing("approve")
        self.allowances[(token.lower(), self._address.lower(), spender.lower())] = amount
        return self._tx()

    async def transfer(self, token: str, to: str, amount: int) -> str:
        self.calls.append(("transfer", {"token": token, "to": to, "amount": amount}))
        self._raise_if_failing("transfer")
        key = (token.lower(), self._address.lower())
        self.balances[key] = self.balances.get(key, 0) - amount
        return self._tx()

    async def swap_exact_input_single(
        self,
        router: str,
        token_in: str,
        token_out: str,
        fee: int,
        amount_in: int,
        recipient: str,
    ) -> str:
        self.calls.append(("swap", {
            "router": router,
            "token_in": token_in,
            "token_out": token_out,
            "fee": fee,
            "amount_in": amount_in,
            "recipient": recipient,
        }))
        outcome = self.swap_outputs.get(fee, RuntimeError(f"no pool for fee {fee}"))
        if isinstance(outcome, Exception):
            raise outcome
        key = (token_out.lower(), recipient.lower())
        self.balances[key] = self.balances.get(key, 0) + outcome
        return self._tx()

    async def mint(self, token: str, to: str, amount: int) -> str:
        self.calls.append(("mint", {"token": token, "to": to, "amount": amount}))
        self._raise_if_failing("mint")
        return self._tx()


def encode_payment_header(
    pay_to: Optional[str] = TEST_ENV["WALLET_ADDRESS"],
    resource: Optional[str] = RESOURCE_URL,
    payer: Optional[str] = PAYER_ADDRESS,
    extra_payload: Optional[Dict[str, Any]] = None
) -> str:
    """Build a base64 X-PAYMENT envelope; None leaves a field out."""
    payload: Dict[str, Any] = {"signature": "0x" + "cd" * 65}
    if resource is not None:
        payload["resource"] = resource
    if pay_to is not None:
        payload["conditions"] = {"payTo": pay_to, "maxAmountRequired": "2000000"}
    if payer is not None:
        payload["authorization"] = {
            "from": payer,
            "to": pay_to,
            "value": "2000000",
            "validAfter": "0",
            "validBefore": "9999999999",
            "nonce": "0x" + "01" * 32,
        }
    payload.update(extra_payload or {})
    envelope = {"x402Version": 1, "scheme": "exact", "network": "base", "payload": payload}
    return b64encode(json.dumps(envelope).encode()).decode()


@pytest.fixture(autouse=True)
def audit_log_path(tmp_path, monkeypatch):
    """Send audit events to a per-test file and reload settings around each test."""
    log_path = tmp_path / "audit.jsonl"
    monkeypatch.setenv("X402_AUDIT_LOG_PATH", str(log_path))
    get_settings.cache_clear()
    configure_audit_log(None)
    yield log_path
    configure_audit_log(None)
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def fake_chain():
    return FakeTransactionService()


@pytest.fixture
def plan(settings):
    return DeliveryPlan.from_settings(settings)


@pytest.fixture
def payment_header():
    return encode_payment_header

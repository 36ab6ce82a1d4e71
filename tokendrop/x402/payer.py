# tokendrop/x402/payer.py
"""
Delivery address resolution for a paid request.

Runs between verification and settlement: a request that cannot name a
valid delivery address is rejected before the payer's funds move.
"""
from typing import Optional

from web3 import Web3

from tokendrop.core.errors import ClientError
from tokendrop.x402.receipt import PaymentReceipt

PAYER_QUERY_PARAM = "payer"
PAYER_HEADER = "X-Payer-Address"


def resolve_payer(
    payer_override: Optional[str],
    payer_header: Optional[str],
    receipt: Optional[PaymentReceipt],
    verified_payer: Optional[str] = None
) -> str:
    """
    Pick the delivery address for a paid request.

    Precedence: ?payer= override, X-Payer-Address header, the receipt's
    authorization.from, then the payer reported by the facilitator.

    Raises:
        ClientError: If no candidate is present or the chosen one is not an address
    """
    candidates = (
        payer_override,
        payer_header,
        receipt.payer if receipt is not None else None,
        verified_payer,
    )
    payer = next((c.strip() for c in candidates if c and c.strip()), None)
    if payer is None:
        raise ClientError("Payer address required")
    if not Web3.is_address(payer.lower()):
        raise ClientError("Invalid payer address")
    return payer

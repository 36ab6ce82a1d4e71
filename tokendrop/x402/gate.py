# tokendrop/x402/gate.py
"""
Receipt gate.

Rejects receipts addressed to another payee or another resource before the
facilitator is ever contacted. Addresses are compared case-insensitively
(checksum casing carries no meaning); the resource URL must match verbatim.
"""
import logging

from tokendrop.core.errors import ForbiddenError
from tokendrop.x402.receipt import PaymentReceipt

logger = logging.getLogger(__name__)

BAD_PAY_TO = "Forbidden: bad payTo"
BAD_RESOURCE = "Forbidden: bad resource"


class GateRejection(ForbiddenError):
    """A receipt failed one of the gate checks."""

    def __init__(self, reason: str, check: str):
        super().__init__(reason)
        self.check = check


def check_receipt(
    receipt: PaymentReceipt,
    expected_resource: str,
    expected_pay_to: str
) -> None:
    """
    Check that a receipt pays this server for this resource.

    Checks run in order: payTo first, then resource.

    Args:
        receipt: Decoded payment receipt
        expected_resource: Canonical resource URL of the paid endpoint
        expected_pay_to: Configured payee address

    Raises:
        GateRejection: With check "payTo" or "resource"
    """
    pay_to = receipt.pay_to
    resource = receipt.resource
    logger.info(f"[X-PAYMENT] resource={resource} payTo={pay_to}")

    if not isinstance(pay_to, str) or pay_to.lower() != expected_pay_to.lower():
        raise GateRejection(BAD_PAY_TO, check="payTo")

    if resource != expected_resource:
        raise GateRejection(BAD_RESOURCE, check="resource")

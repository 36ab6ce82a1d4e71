# tokendrop/x402/receipt.py
"""
Decoding of the X-PAYMENT header.

The header carries a base64-encoded JSON envelope built by the payer's
wallet. Only three nested fields are consumed here (resource, payTo and the
payer address); everything else is kept verbatim so it can be forwarded to
the facilitator untouched.
"""
import json
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from x402.encoding import safe_base64_decode

from tokendrop.core.errors import ClientError

logger = logging.getLogger(__name__)

BAD_PAYMENT_HEADER = "Bad X-PAYMENT"


class ReceiptDecodeError(ClientError):
    """The X-PAYMENT header is not a decodable receipt."""

    def __init__(self, detail: str):
        super().__init__(BAD_PAYMENT_HEADER)
        self.detail = detail


class ReceiptConditions(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    pay_to: Optional[str] = Field(default=None, alias="payTo")


class ReceiptAuthorization(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    from_: Optional[str] = Field(default=None, alias="from")


class ReceiptPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    resource: Optional[str] = None
    conditions: Optional[ReceiptConditions] = None
    authorization: Optional[ReceiptAuthorization] = None


class PaymentReceipt(BaseModel):
    """
    Structured view of an X-PAYMENT envelope.

    Attributes:
        payload: The consumed part of the envelope
        raw: The decoded JSON object exactly as sent by the client
    """
    model_config = ConfigDict(frozen=True)

    payload: ReceiptPayload
    raw: Dict[str, Any]

    @property
    def resource(self) -> Optional[str]:
        return self.payload.resource

    @property
    def pay_to(self) -> Optional[str]:
        if self.payload.conditions is None:
            return None
        return self.payload.conditions.pay_to

    @property
    def payer(self) -> Optional[str]:
        if self.payload.authorization is None:
            return None
        return self.payload.authorization.from_


def decode_payment_header(header_value: str) -> PaymentReceipt:
    """
    Decode the X-PAYMENT header into a PaymentReceipt.

    Args:
        header_value: Base64-encoded JSON payment envelope

    Returns:
        The decoded receipt. Decoding has no side effects, so the same
        header always yields the same receipt.

    Raises:
        ReceiptDecodeError: If the value is not valid base64, not UTF-8,
            not a JSON object, or lacks a well-formed "payload" object.
    """
    try:
        decoded_str = safe_base64_decode(header_value.strip())
    except ValueError as e:
        # binascii.Error and UnicodeDecodeError are both ValueErrors
        raise ReceiptDecodeError(f"invalid base64: {e}") from e

    try:
        envelope = json.loads(decoded_str)
    except json.JSONDecodeError as e:
        raise ReceiptDecodeError(f"invalid JSON: {e}") from e

    if not isinstance(envelope, dict):
        raise ReceiptDecodeError("payment envelope is not a JSON object")
    if not isinstance(envelope.get("payload"), dict):
        raise ReceiptDecodeError("payment envelope has no payload object")

    try:
        payload = ReceiptPayload.model_validate(envelope["payload"])
    except ValidationError as e:
        raise ReceiptDecodeError(f"malformed payload: {e.error_count()} invalid field(s)") from e

    return PaymentReceipt(payload=payload, raw=envelope)

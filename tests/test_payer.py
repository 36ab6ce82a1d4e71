# tests/test_payer.py
"""
Unit tests for delivery address resolution.
"""
import pytest

from conftest import PAYER_ADDRESS, SERVER_ADDRESS
from tokendrop.core.errors import ClientError
from tokendrop.x402.payer import resolve_payer
from tokendrop.x402.receipt import decode_payment_header

OVERRIDE_ADDRESS = "0x4B20993Bc481177ec7E8f571ceCaE8A9e22C02db"


class TestResolvePayer:
    """Delivery address precedence."""

    def test_receipt_payer(self, payment_header):
        receipt = decode_payment_header(payment_header())
        assert resolve_payer(None, None, receipt) == PAYER_ADDRESS

    def test_query_override_wins(self, payment_header):
        receipt = decode_payment_header(payment_header())
        assert resolve_payer(OVERRIDE_ADDRESS, SERVER_ADDRESS, receipt) == OVERRIDE_ADDRESS

    def test_header_before_receipt(self, payment_header):
        receipt = decode_payment_header(payment_header())
        assert resolve_payer(None, OVERRIDE_ADDRESS, receipt) == OVERRIDE_ADDRESS

    def test_verified_payer_last(self, payment_header):
        receipt = decode_payment_header(payment_header(payer=None))
        assert resolve_payer(None, None, receipt, OVERRIDE_ADDRESS) == OVERRIDE_ADDRESS

    def test_surrounding_whitespace_stripped(self):
        assert resolve_payer(f"  {OVERRIDE_ADDRESS} ", None, None) == OVERRIDE_ADDRESS

    def test_missing_payer(self, payment_header):
        receipt = decode_payment_header(payment_header(payer=None))

        with pytest.raises(ClientError) as exc_info:
            resolve_payer(None, "  ", receipt)

        assert exc_info.value.message == "Payer address required"
        assert exc_info.value.status_code == 400

    def test_invalid_payer(self, payment_header):
        receipt = decode_payment_header(payment_header())

        with pytest.raises(ClientError) as exc_info:
            resolve_payer("not-an-address", None, receipt)

        assert exc_info.value.message == "Invalid payer address"

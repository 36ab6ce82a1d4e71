# tests/test_gate.py
"""
Unit tests for the payee/resource gate.
"""
import pytest

from conftest import RESOURCE_URL, TEST_ENV
from tokendrop.x402.gate import BAD_PAY_TO, BAD_RESOURCE, GateRejection, check_receipt
from tokendrop.x402.receipt import decode_payment_header

PAYEE = TEST_ENV["WALLET_ADDRESS"]
OTHER_PAYEE = "0x" + "22" * 20


def _check(header: str) -> None:
    check_receipt(decode_payment_header(header), RESOURCE_URL, PAYEE)


class TestPayToCheck:
    """payTo must be the configured payee, in any casing."""

    @pytest.mark.parametrize("pay_to", [PAYEE, PAYEE.upper().replace("0X", "0x"), PAYEE.lower()])
    def test_case_variants_accepted(self, payment_header, pay_to):
        _check(payment_header(pay_to=pay_to))

    def test_other_payee_rejected(self, payment_header):
        with pytest.raises(GateRejection) as exc_info:
            _check(payment_header(pay_to=OTHER_PAYEE))

        assert exc_info.value.check == "payTo"
        assert exc_info.value.status_code == 403
        assert exc_info.value.to_dict() == {"error": BAD_PAY_TO}

    def test_missing_pay_to_rejected(self, payment_header):
        with pytest.raises(GateRejection) as exc_info:
            _check(payment_header(pay_to=None))

        assert exc_info.value.check == "payTo"

    @pytest.mark.parametrize("resource", [RESOURCE_URL, "https://evil.example/api/buy", None])
    def test_pay_to_checked_before_resource(self, payment_header, resource):
        """A wrong payTo is reported regardless of the resource."""
        with pytest.raises(GateRejection) as exc_info:
            _check(payment_header(pay_to=OTHER_PAYEE, resource=resource))

        assert exc_info.value.message == BAD_PAY_TO


class TestResourceCheck:
    """The resource must be the canonical URL, verbatim."""

    @pytest.mark.parametrize("resource", [
        RESOURCE_URL + "/",
        "http://www.zorro.team/api/buy",
        "https://zorro.team/api/buy",
        "https://www.zorro.team/buy",
        "HTTPS://WWW.ZORRO.TEAM/API/BUY",
        None,
    ])
    def test_non_canonical_resource_rejected(self, payment_header, resource):
        with pytest.raises(GateRejection) as exc_info:
            _check(payment_header(resource=resource))

        assert exc_info.value.check == "resource"
        assert exc_info.value.message == BAD_RESOURCE

    def test_canonical_resource_accepted(self, payment_header):
        _check(payment_header(resource=RESOURCE_URL))

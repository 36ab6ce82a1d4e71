# tests/test_buy_api.py
"""
Integration tests for the paid /api/buy flow through the full application.
"""
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import PAYER_ADDRESS, SERVER_ADDRESS
from tokendrop.api.endpoints.buy import ACCEPTED_MESSAGE
from tokendrop.delivery.models import DELIVERY_AMOUNT, DeliveryRequest
from tokendrop.main import create_app
from tokendrop.x402.audit import AuditEventType, read_audit_log
from tokendrop.x402.facilitator import FacilitatorClient, FacilitatorReply
from tokendrop.x402.middleware import X_PAYMENT_HEADER, X_PAYMENT_RESPONSE_HEADER

OVERRIDE_ADDRESS = "0x4B20993Bc481177ec7E8f571ceCaE8A9e22C02db"


def _json_reply(body) -> FacilitatorReply:
    return FacilitatorReply(status_code=200, content=json.dumps(body).encode(), media_type="application/json")


@pytest.fixture
def facilitator():
    client = MagicMock(spec=FacilitatorClient)
    client.verify.return_value = _json_reply({"isValid": True, "payer": PAYER_ADDRESS})
    client.settle.return_value = _json_reply({"success": True, "transaction": "0xfeed", "network": "base"})
    return client


@pytest.fixture
def app(settings, fake_chain, facilitator):
    return create_app(settings, transaction_service=fake_chain, facilitator_client=facilitator)


@pytest.fixture
def client(app):
    return TestClient(app)


class TestBuyEndpoint:
    """GET /api/buy end to end."""

    def test_unpaid_request_returns_402(self, client, fake_chain):
        response = client.get("/api/buy")

        assert response.status_code == 402
        assert response.json()["accepts"][0]["maxAmountRequired"] == "2000000"
        assert fake_chain.calls == []

    def test_head_returns_402_without_body(self, client, facilitator):
        response = client.head("/api/buy")

        assert response.status_code == 402
        assert response.content == b""
        assert response.headers["content-type"] == "application/json; charset=utf-8"
        facilitator.verify.assert_not_called()

    def test_paid_request_acknowledged_and_delivered(self, client, settings, fake_chain, payment_header):
        fake_chain.set_balance(settings.CONTRACT_ADDRESS, SERVER_ADDRESS, DELIVERY_AMOUNT.units)

        response = client.get("/api/buy", headers={X_PAYMENT_HEADER: payment_header()})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": ACCEPTED_MESSAGE, "payer": PAYER_ADDRESS}
        assert X_PAYMENT_RESPONSE_HEADER in response.headers
        # TestClient runs the background task before returning
        (_, transfer), = fake_chain.operations("transfer")
        assert transfer["to"] == PAYER_ADDRESS
        assert transfer["amount"] == DELIVERY_AMOUNT.units

    def test_acknowledgement_does_not_wait_for_delivery(self, app, client, fake_chain, payment_header):
        scheduler = MagicMock()
        scheduler.schedule.return_value = None
        app.state.delivery_scheduler = scheduler

        response = client.get("/api/buy", headers={X_PAYMENT_HEADER: payment_header()})

        assert response.status_code == 200
        assert fake_chain.calls == []
        (delivery,), _ = scheduler.schedule.call_args
        assert isinstance(delivery, DeliveryRequest)
        assert delivery.payer_address == PAYER_ADDRESS
        assert len(delivery.request_id) == 8

    def test_failed_delivery_not_reported_to_caller(self, client, fake_chain, payment_header):
        fake_chain.failures["mint"] = RuntimeError("caller is not the minter")

        response = client.get("/api/buy", headers={X_PAYMENT_HEADER: payment_header()})

        assert response.status_code == 200
        assert response.json()["success"] is True
        completed = read_audit_log(event_type=AuditEventType.DELIVERY_COMPLETED)
        assert completed[0]["data"]["outcome"] == "failed"

    def test_payer_query_override(self, client, fake_chain, payment_header):
        response = client.get(
            "/api/buy",
            params={"payer": OVERRIDE_ADDRESS},
            headers={X_PAYMENT_HEADER: payment_header()},
        )

        assert response.json()["payer"] == OVERRIDE_ADDRESS
        (_, mint), = fake_chain.operations("mint")
        assert mint["to"] == OVERRIDE_ADDRESS

    def test_payer_header_override(self, client, payment_header):
        response = client.get(
            "/api/buy",
            headers={X_PAYMENT_HEADER: payment_header(), "X-Payer-Address": OVERRIDE_ADDRESS},
        )

        assert response.json()["payer"] == OVERRIDE_ADDRESS

    def test_invalid_payer_rejected_before_settlement(self, client, facilitator, fake_chain, payment_header):
        response = client.get(
            "/api/buy",
            params={"payer": "0xnope"},
            headers={X_PAYMENT_HEADER: payment_header()},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid payer address"}
        assert X_PAYMENT_RESPONSE_HEADER not in response.headers
        facilitator.verify.assert_awaited_once()
        facilitator.settle.assert_not_called()
        assert fake_chain.calls == []

    def test_invalid_payer_header_rejected_before_settlement(self, client, facilitator, fake_chain, payment_header):
        response = client.get(
            "/api/buy",
            headers={X_PAYMENT_HEADER: payment_header(), "X-Payer-Address": "0x1234"},
        )

        assert response.status_code == 400
        facilitator.settle.assert_not_called()
        assert fake_chain.calls == []

    def test_missing_payer_rejected_before_settlement(self, client, facilitator, fake_chain, payment_header):
        facilitator.verify.return_value = _json_reply({"isValid": True})

        response = client.get(
            "/api/buy",
            headers={X_PAYMENT_HEADER: payment_header(payer=None), "X-Payer-Address": "   "},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Payer address required"}
        facilitator.settle.assert_not_called()
        assert fake_chain.calls == []
        rejected = read_audit_log(event_type=AuditEventType.ACCESS_REJECTED)
        assert rejected[0]["data"]["reason"] == "Payer address required"
        assert read_audit_log(event_type=AuditEventType.PAYMENT_SETTLED) == []

    def test_trailing_slash_redirected_before_payment(self, client, facilitator, fake_chain, payment_header):
        response = client.get(
            "/api/buy/",
            headers={X_PAYMENT_HEADER: payment_header()},
            follow_redirects=False,
        )

        assert response.status_code == 307
        assert response.headers["location"].endswith("/api/buy")
        facilitator.verify.assert_not_called()
        facilitator.settle.assert_not_called()
        assert fake_chain.calls == []

    def test_settled_request_always_acknowledged(self, client, facilitator, payment_header):
        facilitator.verify.return_value = _json_reply({"isValid": True, "payer": OVERRIDE_ADDRESS})

        response = client.get("/api/buy", headers={X_PAYMENT_HEADER: payment_header(payer=None)})

        assert response.status_code == 200
        assert response.json()["payer"] == OVERRIDE_ADDRESS
        facilitator.settle.assert_awaited_once()

    def test_acceptance_audited(self, client, payment_header):
        client.get("/api/buy", headers={X_PAYMENT_HEADER: payment_header()})

        accepted = read_audit_log(event_type=AuditEventType.DELIVERY_ACCEPTED)
        assert len(accepted) == 1
        assert accepted[0]["wallet_address"] == PAYER_ADDRESS


class TestBuyPage:
    """GET /buy serves humans and paying clients."""

    def test_html_without_payment(self, client, facilitator):
        response = client.get("/buy")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "https://www.zorro.team/api/buy" in response.text
        facilitator.verify.assert_not_called()

    def test_paid_request_handled_like_api(self, client, fake_chain, payment_header):
        response = client.get("/buy", headers={X_PAYMENT_HEADER: payment_header()})

        assert response.status_code == 200
        assert response.json()["payer"] == PAYER_ADDRESS
        assert fake_chain.operations("mint")
"""
HTTP tests for the webhook, consumption and report endpoints
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import HIDE_PARAM, SECRET, TEST_PASS, TRUSTED_IP
from ledger.api import create_app
from ledger.config import ConsumptionMode
from ledger.errors import StoreUnavailable
from ledger.service import LedgerService

FROM_INSTITUTION = {"CF-Connecting-IP": TRUSTED_IP}


@pytest.fixture
def client(settings, service):
    return TestClient(create_app(settings, service))


def post_batch(client, items, token=SECRET, headers=FROM_INSTITUTION):
    return client.post("/webhook", params={"hmac": token}, headers=headers, json={"pix": items})


class TestWebhook:
    """Tests for POST /webhook."""

    def test_accepts_batch(self, client, pix_item):
        response = post_batch(client, [pix_item("E1", valor="10.005"), pix_item("E2", valor="5.00")])

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["result"]["applied"] == 2

    def test_skipped_records_still_acknowledged(self, client, pix_item):
        bad = pix_item("E2")
        del bad["txid"]

        response = post_batch(client, [pix_item("E1"), bad])

        assert response.status_code == 200
        assert response.json()["result"]["skipped"] == 1

    def test_unknown_address_denied(self, client, pix_item):
        response = post_batch(client, [pix_item("E1")], headers={"CF-Connecting-IP": "198.51.100.7"})

        assert response.status_code == 403
        assert response.json()["detail"] == "IP Denied"

    def test_falls_back_to_peer_address(self, client, pix_item):
        response = post_batch(client, [pix_item("E1")], headers={})

        assert response.status_code == 403

    def test_invalid_token(self, client, pix_item):
        response = post_batch(client, [pix_item("E1")], token="nope")

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid HMAC"

    def test_hidden_test_parameter(self, client, pix_item):
        response = client.post("/webhook", params={HIDE_PARAM: TEST_PASS}, json={"pix": [pix_item("E1")]})

        assert response.status_code == 200
        assert response.json()["result"]["applied"] == 1

    def test_non_json_body(self, client):
        response = client.post(
            "/webhook",
            params={"hmac": SECRET},
            headers={**FROM_INSTITUTION, "Content-Type": "application/json"},
            content=b"not json",
        )

        assert response.status_code == 400

    def test_store_down_returns_503(self, settings, service, pix_item):
        class DownStore(type(service.store)):
            def accrue(self, record):
                raise StoreUnavailable("connection refused")

        service.store = DownStore(service.store._session_factory)
        service.retry_config.max_attempts = 1
        client = TestClient(create_app(settings, service))

        response = post_batch(client, [pix_item("E1")])

        assert response.status_code == 503
        assert response.json()["result"]["failed_ids"] == ["E1"]

    def test_authenticates_once_per_request(self, client, service, pix_item):
        calls = []
        authenticate = service.authenticator.authenticate
        service.authenticator.authenticate = lambda *args: calls.append(args) or authenticate(*args)

        response = post_batch(client, [pix_item("E1")])

        assert response.status_code == 200
        assert len(calls) == 1

    def test_cors_preflight(self, client):
        response = client.options(
            "/webhook",
            headers={"Origin": "https://device.example", "Access-Control-Request-Method": "POST"},
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"


class TestConsumeEndpoint:
    """Tests for GET /consulta-recebimento."""

    def test_consume_then_consume(self, client, pix_item):
        post_batch(client, [pix_item("E1", valor="10.005"), pix_item("E2", valor="5.00")])

        first = client.get("/consulta-recebimento", params={"idmaq": "maquina01"})
        second = client.get("/consulta-recebimento", params={"idmaq": "maquina01"})

        assert first.status_code == 200
        assert Decimal(first.json()["amount"]) == Decimal("15.01")
        assert Decimal(second.json()["amount"]) == Decimal("0")

    def test_unknown_txid(self, client):
        response = client.get("/consulta-recebimento", params={"idmaq": "nope"})

        assert response.status_code == 404
        assert response.json()["detail"] == "ID Not Found."

    def test_missing_txid(self, client):
        assert client.get("/consulta-recebimento").status_code == 422

    def test_unit_mode(self, settings, pix_item):
        unit_settings = settings.model_copy(
            update={"consumption_mode": ConsumptionMode.UNITS, "unit_price": Decimal("0.50")}
        )
        client = TestClient(create_app(unit_settings, LedgerService.from_settings(unit_settings)))
        post_batch(client, [pix_item("E1", valor="1.30")])

        body = client.get("/consulta-recebimento", params={"idmaq": "maquina01"}).json()

        assert body["units"] == 2
        assert Decimal(body["remainder"]) == Decimal("0.30")

    def test_entry_lookup(self, client, pix_item):
        post_batch(client, [pix_item("E1", valor="2.00")])

        body = client.get("/entries/maquina01").json()

        assert Decimal(body["accrued_amount"]) == Decimal("2.00")
        assert client.get("/entries/nope").status_code == 404


class TestReportEndpoint:
    """Tests for GET /consulta-database."""

    def test_entries_table(self, client, pix_item):
        post_batch(client, [pix_item("E1", valor="2.00")])

        response = client.get("/consulta-database", params={"db": "consultas"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "| maquina01 | 2.00" in response.text

    def test_receipts_table(self, client, pix_item):
        post_batch(client, [pix_item("E1", valor="2.00")])

        response = client.get("/consulta-database", params={"db": "recebimentos"})

        assert "E1" in response.text

    def test_other_tables_forbidden(self, client):
        response = client.get("/consulta-database", params={"db": "sqlite_master"})

        assert response.status_code == 403


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

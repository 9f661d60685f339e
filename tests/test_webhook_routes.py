from dataclasses import replace
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import SIGNATURE_HEADERS, event_body
from premium_gateway.main import create_app


def _sale(custom_id="u1"):
    return {"id": "80021663DE681814L", "state": "completed", "custom_id": custom_id}


def _post(client, body, headers=SIGNATURE_HEADERS):
    return client.post("/webhook", content=body, headers={**headers, "Content-Type": "application/json"})


def test_verified_completion_grants_and_acks(client, store):
    store.set("u1", {"premium": False})

    response = _post(client, event_body("PAYMENT.SALE.COMPLETED", _sale()))

    assert response.status_code == 200
    assert response.json() == {"status": "OK"}
    assert client.get("/api/user/subscription", params={"userId": "u1"}).json()["premium"] is True


def test_duplicate_delivery_acks_both_times(client, store):
    store.set("u1", {"premium": False})
    body = event_body("PAYMENT.SALE.COMPLETED", _sale())

    assert _post(client, body).status_code == 200
    assert _post(client, body).status_code == 200
    assert len(store.entitlement_history("u1")) == 1


@pytest.mark.parametrize("custom_id", ["ghost", None])
def test_unresolvable_correlation_id_acks_without_writes(client, store, custom_id):
    resource = _sale(custom_id)
    if custom_id is None:
        del resource["custom_id"]

    with patch.object(store, "set_premium", wraps=store.set_premium) as spy:
        response = _post(client, event_body("PAYMENT.SALE.COMPLETED", resource))

    assert response.status_code == 200
    spy.assert_not_called()


@pytest.mark.parametrize("status", ["FAILURE", "ERROR"])
def test_unverified_signature_is_400(client, store, provider, status):
    store.set("u1", {"premium": False})
    provider.verification_status = status

    with patch.object(store, "set_premium", wraps=store.set_premium) as spy:
        response = _post(client, event_body("PAYMENT.SALE.COMPLETED", _sale()))

    assert response.status_code == 400
    assert response.json()["retryable"] is (status == "ERROR")
    spy.assert_not_called()


def test_missing_signature_headers_is_400(client, provider):
    response = client.post("/webhook", content=event_body("PAYMENT.SALE.COMPLETED", _sale()))

    assert response.status_code == 400
    assert provider.called("verify_webhook_signature") == []


def test_unconfigured_webhook_id_is_500(settings, store, provider):
    app = create_app(replace(settings, paypal_webhook_id=""), store=store, provider=provider)

    with TestClient(app) as client:
        response = _post(client, event_body("PAYMENT.SALE.COMPLETED", _sale()))

    assert response.status_code == 500
    assert response.json()["error"] == "Webhook verification is not configured."
    assert provider.calls == []


def test_unrecognized_event_is_acknowledged(client):
    response = _post(client, event_body("CUSTOMER.DISPUTE.CREATED", {"id": "PP-D-1"}))

    assert response.status_code == 200
    assert response.json() == {"status": "OK"}


def test_cancellation_event_keeps_premium(client, store):
    store.set("u1", {"premium": True})

    response = _post(client, event_body("BILLING.SUBSCRIPTION.CANCELLED", {"id": "I-1", "custom_id": "u1"}))

    assert response.status_code == 200
    assert store.get("u1").premium is True


def test_malformed_body_is_400(client):
    assert _post(client, b"{not json").status_code == 400


def test_unexpected_failure_is_500(client, store):
    store.set("u1", {"premium": False})

    with patch.object(store, "get", side_effect=RuntimeError("boom")):
        response = _post(client, event_body("PAYMENT.SALE.COMPLETED", _sale()))

    assert response.status_code == 500
    assert response.json()["success"] is False

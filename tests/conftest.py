import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from premium_gateway.config import load_settings
from premium_gateway.database import build_engine, build_session_factory, init_db
from premium_gateway.errors import UpstreamError
from premium_gateway.main import create_app
from premium_gateway.paypal import CaptureResult, CreatedOrder
from premium_gateway.reconciler import Reconciler
from premium_gateway.store import UserStore

TEST_ENV = {
    "PAYPAL_CLIENT_ID": "test-client-id",
    "PAYPAL_CLIENT_SECRET": "test-client-secret",
    "PAYPAL_WEBHOOK_ID": "WH-TEST-123",
    "DATABASE_URL": "sqlite://",
    "BASE_URL": "https://shop.example.org",
    "ALLOWED_ORIGINS": "http://localhost:3000",
}

SIGNATURE_HEADERS = {
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-cert-url": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-1",
    "paypal-transmission-id": "69cd13f0-d67a-11e5-baa3-778b53f4ae55",
    "paypal-transmission-sig": "lmI95Jx3Y9nhR5SJWlHVIWpg4AgFk7n9bCHSRxbrd8A9zrhdu2rMyFrmz+Zjh3s3boXB07VXCXUZy/UFzUlnGJn0wDugt7FlSvdKeIJenLRemUxYCPVoEZzg9VFNqOa48gMkvF+XTpxBeUx/kWy6B5cp7GkT2+pOowfRK7OaynuxUoKW3JcMWw272VKjLTtTAShncla7tGF+55rxyt2KNZIIqxNMJ48RDZheGU5w1npu9dZHnPgTXB9iomeVRoD8O/jhRpnKsGrDschyNdkeh81BJJMH4Ctc6lnCCquoP/GzCzz33MMsNdid7vL/NIWaCsekQpW26FpWPi/tfj8nLA==",
    "paypal-transmission-time": "2016-02-18T20:01:35Z",
}


class FakePayPal:
    """Stands in for PayPalClient and records every call it receives."""

    def __init__(self):
        self.calls = []
        self.capture_status = "COMPLETED"
        self.verification_status = "SUCCESS"
        self.error = None
        self._orders = 0

    def _record(self, name, /, **kwargs):
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error

    def called(self, name):
        return [kwargs for call_name, kwargs in self.calls if call_name == name]

    def fetch_access_token(self):
        self._record("fetch_access_token")
        return "A21AAExampleAccessToken"

    def create_order(self, amount, currency, correlation_id, description=None, request_id=None):
        self._record(
            "create_order",
            amount=Decimal(amount),
            currency=currency,
            correlation_id=correlation_id,
            description=description,
            request_id=request_id,
        )
        self._orders += 1
        order_id = f"5O190127TN36471{self._orders:02d}"
        return CreatedOrder(
            order_id=order_id,
            status="CREATED",
            approval_links=[
                {"href": f"https://www.sandbox.paypal.com/checkoutnow?token={order_id}", "rel": "approve", "method": "GET"}
            ],
        )

    def capture_order(self, order_id, request_id=None):
        self._record("capture_order", order_id=order_id, request_id=request_id)
        return CaptureResult(order_id=order_id, status=self.capture_status, payload={"id": order_id, "status": self.capture_status})

    def create_plan(self, name, description, amount, currency, interval, interval_count=1):
        self._record(
            "create_plan",
            name=name,
            description=description,
            amount=amount,
            currency=currency,
            interval=interval,
            interval_count=interval_count,
        )
        return {"id": "P-5ML4271244454362WXNWU5NQ", "name": name, "status": "ACTIVE"}

    def list_plans(self):
        self._record("list_plans")
        return [{"id": "P-5ML4271244454362WXNWU5NQ", "name": "Premium monthly"}]

    def create_subscription(self, plan_id, subscriber_email, return_url, cancel_url, custom_id=None):
        self._record(
            "create_subscription",
            plan_id=plan_id,
            subscriber_email=subscriber_email,
            return_url=return_url,
            cancel_url=cancel_url,
            custom_id=custom_id,
        )
        return {"id": "I-BW452GLLEP1G", "status": "APPROVAL_PENDING", "plan_id": plan_id}

    def cancel_subscription(self, subscription_id, reason=None):
        self._record("cancel_subscription", subscription_id=subscription_id, reason=reason)

    def fetch_subscription(self, subscription_id):
        self._record("fetch_subscription", subscription_id=subscription_id)
        return {"id": subscription_id, "status": "ACTIVE"}

    def verify_webhook_signature(self, headers, event, webhook_id):
        self._record("verify_webhook_signature", headers=headers, event=event, webhook_id=webhook_id)
        return self.verification_status


@pytest.fixture
def settings():
    return load_settings(TEST_ENV)


@pytest.fixture
def store():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield UserStore(build_session_factory(engine))
    engine.dispose()


@pytest.fixture
def provider():
    return FakePayPal()


@pytest.fixture
def reconciler(store, provider):
    return Reconciler(store, provider, webhook_id=TEST_ENV["PAYPAL_WEBHOOK_ID"])


@pytest.fixture
def app(settings, store, provider):
    return create_app(settings, store=store, provider=provider)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def upstream_failure():
    return UpstreamError(
        "PayPal request failed.",
        provider_status=422,
        payload={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_NOT_APPROVED"}]},
    )


def make_event(event_type, resource=None, event_id="WH-2WR32451HC0233532-67976317FL4543714"):
    return {
        "id": event_id,
        "event_version": "1.0",
        "create_time": "2024-03-01T12:00:00Z",
        "resource_type": "sale",
        "event_type": event_type,
        "resource": resource if resource is not None else {},
    }


def event_body(event_type, resource=None, **kwargs):
    return json.dumps(make_event(event_type, resource, **kwargs)).encode("utf-8")

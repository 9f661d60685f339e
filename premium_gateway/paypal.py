import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import requests

from premium_gateway.config import Settings
from premium_gateway.errors import AuthError, UpstreamError

logger = logging.getLogger(__name__)

CAPTURE_COMPLETED = "COMPLETED"
VERIFICATION_SUCCESS = "SUCCESS"
VERIFICATION_FAILURE = "FAILURE"
VERIFICATION_ERROR = "ERROR"

DEFAULT_CANCEL_REASON = "Cancelled at the user's request"

# Header names PayPal uses to carry the webhook transmission signature.
SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def format_amount(amount: Decimal) -> str:
    return str(Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass
class CreatedOrder:
    order_id: str
    status: str
    approval_links: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CaptureResult:
    order_id: str
    status: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.status == CAPTURE_COMPLETED


class PayPalClient:
    """
    Stateless wrapper around the PayPal REST API.

    Every call fetches a fresh access token through the client-credentials
    grant; nothing is cached and nothing is retried.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        api_base: str,
        timeout: int = 15,
        brand_name: str = "Premium Gateway",
        locale: str = "fr-FR",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.brand_name = brand_name
        self.locale = locale
        self._http = session or requests

    @classmethod
    def from_settings(cls, settings: Settings) -> "PayPalClient":
        return cls(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            api_base=settings.paypal_api_base,
            timeout=settings.paypal_timeout_seconds,
            brand_name=settings.brand_name,
            locale=settings.locale,
        )

    def fetch_access_token(self) -> str:
        try:
            response = self._http.request(
                method="POST",
                url=f"{self.api_base}/v1/oauth2/token",
                auth=(self.client_id, self._client_secret),
                headers={"Accept": "application/json"},
                data={"grant_type": "client_credentials"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("PayPal token request failed: %s", exc)
            raise AuthError("Unable to authenticate with PayPal.", status_code=500)

        if response.status_code >= 400:
            logger.error("PayPal rejected client credentials (HTTP %s)", response.status_code)
            raise AuthError("Unable to authenticate with PayPal.", status_code=500)

        try:
            token = str(response.json().get("access_token") or "")
        except (ValueError, AttributeError):
            token = ""
        if not token:
            raise AuthError("PayPal returned no access token.", status_code=500)
        return token

    def _request(
        self,
        method: str,
        path: str,
        json_payload: Optional[dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        access_token = self.fetch_access_token()
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token}",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        url = f"{self.api_base}/{path.lstrip('/')}"
        try:
            response = self._http.request(
                method=method.upper(),
                url=url,
                headers=headers,
                json=json_payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("PayPal %s %s failed: %s", method.upper(), path, exc)
            raise UpstreamError("Failed to contact PayPal.")

        if response.status_code >= 400:
            try:
                error_payload = response.json()
            except ValueError:
                error_payload = response.text or None
            logger.error(
                "PayPal %s %s returned HTTP %s: %s",
                method.upper(),
                path,
                response.status_code,
                error_payload,
            )
            raise UpstreamError(
                "PayPal request failed.",
                provider_status=response.status_code,
                payload=error_payload,
            )

        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError:
            raise UpstreamError("Invalid response received from PayPal.", provider_status=response.status_code)
        if not isinstance(payload, dict):
            raise UpstreamError("Unexpected response format from PayPal.", provider_status=response.status_code)
        return payload

    # Orders v2

    def create_order(
        self,
        amount: Decimal,
        currency: str,
        correlation_id: str,
        description: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> CreatedOrder:
        purchase_unit: dict[str, Any] = {
            "amount": {"currency_code": currency, "value": format_amount(amount)},
            "custom_id": correlation_id,
        }
        if description:
            purchase_unit["description"] = description
        payload = self._request(
            "POST",
            "/v2/checkout/orders",
            json_payload={"intent": "CAPTURE", "purchase_units": [purchase_unit]},
            request_id=request_id,
        )
        order_id = str(payload.get("id") or "").strip()
        if not order_id:
            raise UpstreamError("PayPal order response is missing an id.", payload=payload)
        logger.info("Created PayPal order %s for %s", order_id, correlation_id)
        return CreatedOrder(
            order_id=order_id,
            status=str(payload.get("status") or ""),
            approval_links=list(payload.get("links") or []),
        )

    def capture_order(self, order_id: str, request_id: Optional[str] = None) -> CaptureResult:
        payload = self._request(
            "POST",
            f"/v2/checkout/orders/{order_id}/capture",
            json_payload={},
            request_id=request_id,
        )
        status = str(payload.get("status") or "").strip().upper()
        logger.info("Captured PayPal order %s with status %s", order_id, status or "<none>")
        return CaptureResult(order_id=order_id, status=status, payload=payload)

    # Catalog and billing

    def create_product(self, name: str, description: Optional[str]) -> str:
        payload = self._request(
            "POST",
            "/v1/catalogs/products",
            json_payload={
                "name": name,
                "description": description or name,
                "type": "SERVICE",
                "category": "SOFTWARE",
            },
        )
        product_id = str(payload.get("id") or "").strip()
        if not product_id:
            raise UpstreamError("PayPal product response is missing an id.", payload=payload)
        return product_id

    def create_plan(
        self,
        name: str,
        description: Optional[str],
        amount: Decimal,
        currency: str,
        interval: str,
        interval_count: int = 1,
    ) -> dict[str, Any]:
        # Plans hang off a catalog product, which must exist first.
        product_id = self.create_product(name, description)
        plan = self._request(
            "POST",
            "/v1/billing/plans",
            json_payload={
                "product_id": product_id,
                "name": name,
                "description": description or name,
                "billing_cycles": [
                    {
                        "frequency": {
                            "interval_unit": interval,
                            "interval_count": interval_count or 1,
                        },
                        "tenure_type": "REGULAR",
                        "sequence": 1,
                        "total_cycles": 0,
                        "pricing_scheme": {
                            "fixed_price": {
                                "value": format_amount(amount),
                                "currency_code": currency,
                            }
                        },
                    }
                ],
                "payment_preferences": {
                    "auto_bill_outstanding": True,
                    "setup_fee": {"value": "0", "currency_code": currency},
                    "setup_fee_failure_action": "CONTINUE",
                    "payment_failure_threshold": 3,
                },
            },
        )
        logger.info("Created PayPal plan %s on product %s", plan.get("id"), product_id)
        return plan

    def list_plans(self) -> list[dict[str, Any]]:
        payload = self._request("GET", "/v1/billing/plans")
        return list(payload.get("plans") or [])

    def create_subscription(
        self,
        plan_id: str,
        subscriber_email: str,
        return_url: str,
        cancel_url: str,
        custom_id: Optional[str] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "plan_id": plan_id,
            "subscriber": {"email_address": subscriber_email},
            "application_context": {
                "brand_name": self.brand_name,
                "locale": self.locale,
                "shipping_preference": "NO_SHIPPING",
                "user_action": "SUBSCRIBE_NOW",
                "return_url": return_url,
                "cancel_url": cancel_url,
            },
        }
        if custom_id:
            body["custom_id"] = custom_id
        subscription = self._request("POST", "/v1/billing/subscriptions", json_payload=body)
        logger.info("Created PayPal subscription %s on plan %s", subscription.get("id"), plan_id)
        return subscription

    def cancel_subscription(self, subscription_id: str, reason: Optional[str] = None) -> None:
        self._request(
            "POST",
            f"/v1/billing/subscriptions/{subscription_id}/cancel",
            json_payload={"reason": reason or DEFAULT_CANCEL_REASON},
        )
        logger.info("Cancelled PayPal subscription %s", subscription_id)

    def fetch_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._request("GET", f"/v1/billing/subscriptions/{subscription_id}")

    # Notifications

    def verify_webhook_signature(
        self,
        headers: dict[str, str],
        event: dict[str, Any],
        webhook_id: str,
    ) -> str:
        """Ask PayPal whether a webhook transmission is authentic.

        Returns "SUCCESS" or "FAILURE" as reported by PayPal, and "ERROR"
        when the verification call itself could not be completed. This never
        raises: callers branch on the returned status.
        """
        body = {name: headers.get(name) for name in SIGNATURE_HEADERS}
        body["webhook_id"] = webhook_id
        body["webhook_event"] = event
        try:
            payload = self._request(
                "POST",
                "/v1/notifications/verify-webhook-signature",
                json_payload=body,
            )
        except (AuthError, UpstreamError) as exc:
            logger.error("Webhook signature verification call failed: %s", exc.message)
            return VERIFICATION_ERROR

        status = str(payload.get("verification_status") or "").strip().upper()
        if status not in {VERIFICATION_SUCCESS, VERIFICATION_FAILURE}:
            logger.error("Unexpected webhook verification status: %r", status)
            return VERIFICATION_ERROR
        return status

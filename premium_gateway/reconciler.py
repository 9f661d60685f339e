"""
Entitlement reconciliation.

Keeps the premium flag of a user consistent with payment notifications that
may arrive late, out of order, or more than once, and with the synchronous
capture path that can grant the same purchase a second time. All grants go
through `Reconciler.grant_entitlement`; all revocations through
`Reconciler.revoke_entitlement`. Granting is an unconditional
"premium = true" write, so concurrent or repeated grants converge.
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from premium_gateway.errors import ConfigError, ValidationError, WebhookVerificationError
from premium_gateway.paypal import SIGNATURE_HEADERS, VERIFICATION_SUCCESS, CaptureResult, PayPalClient
from premium_gateway.store import UserStore

logger = logging.getLogger(__name__)

SOURCE_CAPTURE = "capture"
SOURCE_WEBHOOK = "webhook"
SOURCE_ADMIN = "admin"
SOURCE_CANCELLATION = "cancellation"


class EventKind(str, Enum):
    SUBSCRIPTION_CREATED = "BILLING.SUBSCRIPTION.CREATED"
    SUBSCRIPTION_CANCELLED = "BILLING.SUBSCRIPTION.CANCELLED"
    SUBSCRIPTION_PAYMENT_FAILED = "BILLING.SUBSCRIPTION.PAYMENT.FAILED"
    SALE_COMPLETED = "PAYMENT.SALE.COMPLETED"
    CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"

    @classmethod
    def from_tag(cls, tag: Optional[str]) -> Optional["EventKind"]:
        try:
            return cls(str(tag or "").strip())
        except ValueError:
            return None


COMPLETION_EVENTS = frozenset({EventKind.SALE_COMPLETED, EventKind.CAPTURE_COMPLETED})


class EntitlementChange(str, Enum):
    GRANTED = "granted"
    REVOKED = "revoked"
    UNCHANGED = "unchanged"
    USER_NOT_FOUND = "user_not_found"


@dataclass
class WebhookOutcome:
    event_type: str
    kind: Optional[EventKind]
    resource_id: Optional[str] = None
    user_id: Optional[str] = None
    change: Optional[EntitlementChange] = None
    reason: Optional[str] = None

    @property
    def recognized(self) -> bool:
        return self.kind is not None


def extract_signature_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Pick the PayPal transmission headers, failing when any is missing."""
    lowered = {str(key).lower(): value for key, value in headers.items()}
    collected: dict[str, str] = {}
    missing = []
    for name, header in SIGNATURE_HEADERS.items():
        value = str(lowered.get(header) or "").strip()
        if not value:
            missing.append(header)
        collected[name] = value
    if missing:
        raise WebhookVerificationError(
            f"Missing webhook signature headers: {', '.join(missing)}",
            verification_status=None,
        )
    return collected


def correlation_id_from_resource(resource: Mapping[str, Any]) -> Optional[str]:
    # Sales carry custom_id (older payloads: custom); order captures carry it
    # on the capture itself or on its purchase unit.
    for key in ("custom_id", "custom"):
        value = str(resource.get(key) or "").strip()
        if value:
            return value
    for unit in resource.get("purchase_units") or []:
        value = str((unit or {}).get("custom_id") or "").strip()
        if value:
            return value
    return None


class Reconciler:
    def __init__(self, store: UserStore, provider: PayPalClient, webhook_id: str = "") -> None:
        self.store = store
        self.provider = provider
        self.webhook_id = webhook_id
        self._handlers: dict[EventKind, Callable[[WebhookOutcome, Mapping[str, Any]], None]] = {
            EventKind.SUBSCRIPTION_CREATED: self._log_only,
            EventKind.SUBSCRIPTION_CANCELLED: self._log_only,
            EventKind.SUBSCRIPTION_PAYMENT_FAILED: self._log_only,
            EventKind.SALE_COMPLETED: self._apply_completion,
            EventKind.CAPTURE_COMPLETED: self._apply_completion,
        }
        missing = set(EventKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No webhook handler for {sorted(kind.value for kind in missing)}")

    # Mutation points

    def grant_entitlement(self, user_id: str, source: str, reference: Optional[str] = None) -> EntitlementChange:
        user = self.store.get(user_id)
        if user is None:
            logger.warning("Not granting premium: user %s not found (source=%s, ref=%s)", user_id, source, reference)
            return EntitlementChange.USER_NOT_FOUND
        if user.premium:
            logger.info("User %s already premium (source=%s, ref=%s)", user_id, source, reference)
            return EntitlementChange.UNCHANGED
        if self.store.set_premium(user_id, True, source, reference) is None:
            return EntitlementChange.USER_NOT_FOUND
        logger.info("Granted premium to %s (source=%s, ref=%s)", user_id, source, reference)
        return EntitlementChange.GRANTED

    def revoke_entitlement(self, user_id: str, source: str, reference: Optional[str] = None) -> EntitlementChange:
        user = self.store.get(user_id)
        if user is None:
            return EntitlementChange.USER_NOT_FOUND
        if not user.premium:
            return EntitlementChange.UNCHANGED
        if self.store.set_premium(user_id, False, source, reference) is None:
            return EntitlementChange.USER_NOT_FOUND
        logger.info("Revoked premium from %s (source=%s, ref=%s)", user_id, source, reference)
        return EntitlementChange.REVOKED

    def set_entitlement(self, user_id: str, premium: bool, source: str = SOURCE_ADMIN) -> EntitlementChange:
        if premium:
            return self.grant_entitlement(user_id, source)
        return self.revoke_entitlement(user_id, source)

    # Synchronous capture path

    def apply_capture(self, user_id: str, capture: CaptureResult) -> Optional[EntitlementChange]:
        """Grant premium when a capture completed; None means it did not."""
        if not capture.completed:
            logger.info("Capture of order %s is %s, premium not granted", capture.order_id, capture.status or "<none>")
            return None
        return self.grant_entitlement(user_id, SOURCE_CAPTURE, capture.order_id)

    # Asynchronous webhook path

    def handle_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookOutcome:
        if not self.webhook_id:
            raise ConfigError("Webhook verification is not configured.")

        signature = extract_signature_headers(headers)
        event = self._parse_event(raw_body)

        status = self.provider.verify_webhook_signature(signature, event, self.webhook_id)
        if status != VERIFICATION_SUCCESS:
            logger.error("Webhook signature not verified (status=%s)", status)
            raise WebhookVerificationError("Invalid webhook signature.", verification_status=status)

        event_type = str(event.get("event_type") or "").strip()
        resource = event.get("resource") if isinstance(event.get("resource"), dict) else {}
        outcome = WebhookOutcome(
            event_type=event_type,
            kind=EventKind.from_tag(event_type),
            resource_id=str(resource.get("id") or "") or None,
        )
        logger.info("Verified webhook %s for resource %s", event_type or "<none>", outcome.resource_id)

        if outcome.kind is None:
            logger.warning("Unhandled webhook event type: %s", event_type or "<none>")
            outcome.reason = "unrecognized_event"
            return outcome

        self._handlers[outcome.kind](outcome, resource)
        return outcome

    def _parse_event(self, raw_body: bytes) -> dict[str, Any]:
        try:
            event = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ValidationError("Invalid webhook payload.")
        if not isinstance(event, dict):
            raise ValidationError("Invalid webhook payload.")
        return event

    def _log_only(self, outcome: WebhookOutcome, resource: Mapping[str, Any]) -> None:
        # Cancellation and failed payments do not revoke premium.
        logger.info("Webhook %s for %s acknowledged without change", outcome.event_type, outcome.resource_id)
        outcome.reason = "logged_only"

    def _apply_completion(self, outcome: WebhookOutcome, resource: Mapping[str, Any]) -> None:
        user_id = correlation_id_from_resource(resource)
        if not user_id:
            logger.warning("Completion event %s carries no correlation id", outcome.resource_id)
            outcome.reason = "missing_correlation_id"
            return
        outcome.user_id = user_id
        outcome.change = self.grant_entitlement(user_id, SOURCE_WEBHOOK, outcome.resource_id)
        if outcome.change == EntitlementChange.USER_NOT_FOUND:
            outcome.reason = "user_not_found"

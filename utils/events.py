"""
Payment-provider webhook events: signature verification and typed payloads.

verify_signature() must be given the raw request body, before anything parses it.
parse_event() turns the verified JSON envelope into one of the event models
below, selected by the envelope's "type".
"""
import hmac
import json
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Annotated, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError
import stripe
from standardwebhooks import Webhook

from core.config import logger
from core.errors import AuthenticationError, ValidationError
from models.sales import SaleType
from models.user import SubscriptionStatus, SubscriptionTier

SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"

HANDLED_EVENT_TYPES = {
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_UPDATED,
    SUBSCRIPTION_DELETED,
    CHECKOUT_COMPLETED,
    CHECKOUT_ASYNC_PAYMENT_SUCCEEDED,
}

# Provider status -> account subscription status
_STATUS_MAP = {
    "inactive": SubscriptionStatus.INACTIVE.value,
    "incomplete": SubscriptionStatus.INACTIVE.value,
    "paused": SubscriptionStatus.INACTIVE.value,
    "trialing": SubscriptionStatus.TRIALING.value,
    "active": SubscriptionStatus.ACTIVE.value,
    "past_due": SubscriptionStatus.PAST_DUE.value,
    "unpaid": SubscriptionStatus.UNPAID.value,
    "canceled": SubscriptionStatus.CANCELLED.value,
    "cancelled": SubscriptionStatus.CANCELLED.value,
    "incomplete_expired": SubscriptionStatus.CANCELLED.value,
}

_CENT = Decimal("0.01")

_SIGNATURE_HEADERS = ("webhook-id", "webhook-timestamp", "webhook-signature")
SHARED_SECRET_HEADER = "x-webhook-secret"
STRIPE_SIGNATURE_HEADER = "stripe-signature"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

def verify_signature(raw_body: bytes, headers: Mapping[str, str], secret: str) -> Any:
    """Authenticate a webhook body and return its decoded JSON.

    Three schemes, picked by the headers present: Stripe-Signature
    (stripe.Webhook), Standard Webhooks (whsec_ secrets), or a shared secret
    in X-Webhook-Secret.

    Raises AuthenticationError on any verification failure, including a
    missing secret. Raises ValidationError when an authenticated body is not JSON.
    """
    secret = (secret or "").strip()
    if not secret:
        raise AuthenticationError("webhook secret is not configured")

    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}

    stripe_sig = lowered.get(STRIPE_SIGNATURE_HEADER)
    if stripe_sig:
        try:
            stripe.Webhook.construct_event(raw_body, stripe_sig, secret)
        except stripe.SignatureVerificationError as ex:
            raise AuthenticationError(f"invalid stripe signature: {ex}") from ex
        except ValueError as ex:
            raise ValidationError(f"invalid JSON: {ex}") from ex
        # The event object is rebuilt from the verified body as plain JSON
        return json.loads(raw_body)

    if secret.startswith("whsec_"):
        sig_headers = {h: lowered.get(h) or "" for h in _SIGNATURE_HEADERS}
        if not all(sig_headers.values()):
            raise AuthenticationError("missing signature headers")
        try:
            return Webhook(secret).verify(data=raw_body, headers=sig_headers)
        except json.JSONDecodeError as ex:
            raise ValidationError(f"invalid JSON: {ex}") from ex
        except Exception as ex:
            raise AuthenticationError(f"invalid signature: {ex}") from ex

    provided = lowered.get(SHARED_SECRET_HEADER) or ""
    if not provided or not hmac.compare_digest(provided.encode(), secret.encode()):
        raise AuthenticationError("invalid shared secret")
    try:
        return json.loads(raw_body)
    except ValueError as ex:
        raise ValidationError(f"invalid JSON: {ex}") from ex


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------

def _object_id(value: Any) -> Any:
    # Expanded provider objects arrive as {"id": ...}
    if isinstance(value, dict):
        return value.get("id")
    return value


class _Loose(BaseModel):
    model_config = ConfigDict(extra="allow")


class Recurring(_Loose):
    interval: Optional[str] = None


class Price(_Loose):
    recurring: Optional[Recurring] = None


class Plan(_Loose):
    interval: Optional[str] = None


class SubscriptionItem(_Loose):
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    price: Optional[Price] = None
    plan: Optional[Plan] = None


class SubscriptionItems(_Loose):
    data: list[SubscriptionItem] = Field(default_factory=list)


class SubscriptionObject(_Loose):
    id: str
    customer: Optional[str] = None
    status: str
    items: SubscriptionItems = Field(default_factory=SubscriptionItems)
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    billing_cycle_anchor: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("customer", mode="before")
    @classmethod
    def _customer_id(cls, v):
        return _object_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, v):
        return v or {}

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        raw = str(v or "").strip().lower()
        if raw not in _STATUS_MAP:
            raise ValueError(f"unknown subscription status {v!r}")
        return _STATUS_MAP[raw]

    def first_item(self) -> Optional[SubscriptionItem]:
        return self.items.data[0] if self.items.data else None

    def tier(self) -> Optional[str]:
        """Billing interval of the first line item, when it is month or year."""
        item = self.first_item()
        interval = None
        if item is not None:
            if item.price and item.price.recurring:
                interval = item.price.recurring.interval
            if not interval and item.plan:
                interval = item.plan.interval
        interval = (interval or "").strip().lower()
        if interval in (SubscriptionTier.MONTH.value, SubscriptionTier.YEAR.value):
            return interval
        if interval:
            logger.info(f"[events] subscription {self.id} has unsupported interval {interval!r}")
        return None

    def period_start(self) -> Optional[datetime]:
        item = self.first_item()
        ts = (item.current_period_start if item else None) or self.current_period_start or self.billing_cycle_anchor
        return _from_unix(ts)

    def period_end(self) -> Optional[datetime]:
        item = self.first_item()
        ts = (item.current_period_end if item else None) or self.current_period_end
        return _from_unix(ts)

    def metadata_account_id(self) -> str:
        for k in ("accountId", "account_id", "uid", "userId", "firebaseUID"):
            v = str(self.metadata.get(k) or "").strip()
            if v:
                return v
        return ""


class CustomerDetails(_Loose):
    email: Optional[str] = None
    name: Optional[str] = None


class CheckoutSessionObject(_Loose):
    id: str
    mode: Optional[str] = None
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    payment_intent: Optional[str] = None
    subscription: Optional[str] = None
    customer_email: Optional[str] = None
    customer_details: Optional[CustomerDetails] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payment_intent", "subscription", mode="before")
    @classmethod
    def _expanded_id(cls, v):
        return _object_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, v):
        return v or {}

    @field_validator("amount_total")
    @classmethod
    def _non_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError("amount_total must not be negative")
        return v

    @property
    def is_paid(self) -> bool:
        return (self.payment_status or "").strip().lower() == "paid"

    def amount(self) -> Decimal:
        """Gross amount in major units (minor units / 100)."""
        return minor_to_decimal(self.amount_total or 0)

    def currency_code(self) -> str:
        return (self.currency or "usd").strip().upper()

    def referral_code(self) -> str:
        return str(self.metadata.get("referralCode") or self.metadata.get("referral_code") or "").strip()

    def product_ids(self) -> list[str]:
        raw = self.metadata.get("productIds") or self.metadata.get("productId") or ""
        return _split(raw, ",")

    def product_names(self) -> list[str]:
        raw = self.metadata.get("productNames") or self.metadata.get("productName") or ""
        return _split(raw, "|")

    def email(self) -> str:
        for candidate in (
            self.customer_details.email if self.customer_details else None,
            self.customer_email,
            self.metadata.get("email"),
        ):
            val = str(candidate or "").strip().lower()
            if val and "@" in val:
                return val
        return ""

    def sale_type(self) -> str:
        mode = (self.mode or "").strip().lower()
        if mode == "subscription":
            return SaleType.SUBSCRIPTION.value
        if mode == "payment":
            return SaleType.STORE.value
        # No mode on the session: a product-id list marks a storefront purchase
        return SaleType.STORE.value if self.product_ids() else SaleType.SUBSCRIPTION.value


class SubscriptionEventData(_Loose):
    object: SubscriptionObject


class CheckoutEventData(_Loose):
    object: CheckoutSessionObject


class SubscriptionCreated(_Loose):
    id: Optional[str] = None
    type: Literal["customer.subscription.created"]
    data: SubscriptionEventData


class SubscriptionUpdated(_Loose):
    id: Optional[str] = None
    type: Literal["customer.subscription.updated"]
    data: SubscriptionEventData


class SubscriptionDeleted(_Loose):
    id: Optional[str] = None
    type: Literal["customer.subscription.deleted"]
    data: SubscriptionEventData


class CheckoutCompleted(_Loose):
    id: Optional[str] = None
    type: Literal["checkout.session.completed", "checkout.session.async_payment_succeeded"]
    data: CheckoutEventData


WebhookEvent = Annotated[
    Union[SubscriptionCreated, SubscriptionUpdated, SubscriptionDeleted, CheckoutCompleted],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(WebhookEvent)


def parse_event(payload: Any) -> Optional[WebhookEvent]:
    """Validate a verified envelope into a typed event.

    Returns None for well-formed envelopes whose type this service does not handle.
    Raises ValidationError for malformed envelopes of a handled type.
    """
    if not isinstance(payload, dict):
        raise ValidationError("event payload must be a JSON object")
    evt_type = str(payload.get("type") or "").strip()
    if not evt_type:
        raise ValidationError("event type is missing")
    if evt_type not in HANDLED_EVENT_TYPES:
        return None
    try:
        return _event_adapter.validate_python(payload)
    except PydanticValidationError as ex:
        raise ValidationError(f"invalid {evt_type} payload: {ex.error_count()} error(s): {ex.errors()[0].get('msg')}") from ex


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def minor_to_decimal(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor)) / Decimal(100)).quantize(_CENT, rounding=ROUND_HALF_UP)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _from_unix(ts: Optional[int]) -> Optional[datetime]:
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def _split(raw: Any, sep: str) -> list[str]:
    if isinstance(raw, (list, tuple)):
        parts = [str(p) for p in raw]
    else:
        parts = str(raw or "").split(sep)
    return [p.strip() for p in parts if p and p.strip()]

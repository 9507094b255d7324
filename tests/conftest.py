import base64
import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from standardwebhooks import Webhook

from core.database import get_db, init_db
from main import app
from models.user import User
from routers.accounts import get_internal_api_key
from routers.webhooks import get_webhook_secret
from utils.commissions import get_commission_policy

WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"storefront-test-webhook-secret!!").decode()
INTERNAL_KEY = "internal-test-key"
POLICY = {"store": Decimal("1.0"), "subscription": Decimal("0.10")}


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def policy():
    return dict(POLICY)


@pytest.fixture
def client(db, policy):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_webhook_secret] = lambda: WEBHOOK_SECRET
    app.dependency_overrides[get_commission_policy] = lambda: policy
    app.dependency_overrides[get_internal_api_key] = lambda: INTERNAL_KEY
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(uid=None, email=None, referral_code=None, **fields):
        uid = uid or f"uid_{uuid.uuid4().hex[:10]}"
        user = User(
            uid=uid,
            email=email or f"{uid}@example.com",
            display_name=fields.pop("display_name", uid),
            referral_code=referral_code or uuid.uuid4().hex[:8].upper(),
            subscription_status=fields.pop("subscription_status", "inactive"),
            total_earnings=0,
            available_balance=0,
            lifetime_earnings=0,
            referral_count=0,
            **fields,
        )
        db.add(user)
        db.commit()
        return user
    return _make


def sign(payload, secret=WEBHOOK_SECRET, msg_id=None):
    body = json.dumps(payload)
    msg_id = msg_id or f"msg_{uuid.uuid4().hex}"
    ts = datetime.now(timezone.utc)
    signature = Webhook(secret).sign(msg_id, ts, body)
    headers = {
        "webhook-id": msg_id,
        "webhook-timestamp": str(int(ts.timestamp())),
        "webhook-signature": signature,
        "content-type": "application/json",
    }
    return body.encode(), headers


def stripe_sign(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Body and headers in the Stripe-Signature format (t=..., v1=HMAC-SHA256)."""
    body = json.dumps(payload)
    timestamp = int(timestamp or time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256).hexdigest()
    headers = {
        "stripe-signature": f"t={timestamp},v1={digest}",
        "content-type": "application/json",
    }
    return body.encode(), headers


@pytest.fixture
def post_event(client):
    def _post(payload, path="/api/webhooks/payments"):
        body, headers = sign(payload)
        return client.post(path, content=body, headers=headers)
    return _post


def subscription_event(
    event_type="customer.subscription.updated",
    sub_id="sub_123",
    customer="cus_123",
    status="active",
    interval="month",
    period_start=1_700_000_000,
    period_end=1_702_592_000,
    metadata=None,
):
    item = {"price": {"recurring": {"interval": interval}}}
    if period_start is not None:
        item["current_period_start"] = period_start
    if period_end is not None:
        item["current_period_end"] = period_end
    return {
        "id": f"evt_{uuid.uuid4().hex[:12]}",
        "type": event_type,
        "data": {
            "object": {
                "id": sub_id,
                "object": "subscription",
                "customer": customer,
                "status": status,
                "billing_cycle_anchor": 1_699_999_000,
                "items": {"object": "list", "data": [item]},
                "metadata": metadata or {},
            }
        },
    }


def checkout_event(
    session_id="cs_test_1",
    amount_total=1000,
    currency="usd",
    payment_status="paid",
    referral_code=None,
    product_ids=None,
    product_names=None,
    email="buyer@example.com",
    payment_intent="pi_123",
    event_type="checkout.session.completed",
    mode=None,
):
    metadata = {}
    if referral_code is not None:
        metadata["referralCode"] = referral_code
    if product_ids:
        metadata["productIds"] = ",".join(product_ids)
    if product_names:
        metadata["productNames"] = " | ".join(product_names)
    obj = {
        "id": session_id,
        "object": "checkout.session",
        "mode": mode or ("payment" if product_ids else "subscription"),
        "payment_status": payment_status,
        "amount_total": amount_total,
        "currency": currency,
        "payment_intent": payment_intent,
        "metadata": metadata,
    }
    if email:
        obj["customer_details"] = {"email": email}
    return {
        "id": f"evt_{uuid.uuid4().hex[:12]}",
        "type": event_type,
        "data": {"object": obj},
    }

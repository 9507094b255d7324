from decimal import Decimal

import pytest

from conftest import checkout_event
from models.purchases import Purchase
from models.sales import Sale
from models.user import User
from utils.commissions import commission_rate, compute_commission


def _reload(db, uid):
    db.expire_all()
    return db.query(User).filter(User.uid == uid).one()


@pytest.mark.parametrize("rate, expected", [
    (Decimal("1.0"), Decimal("10.00")),
    (Decimal("0.10"), Decimal("1.00")),
    (Decimal("0.333"), Decimal("3.33")),
])
def test_compute_commission(rate, expected):
    assert compute_commission(Decimal("10.00"), rate) == expected


def test_missing_policy_entry_pays_nothing():
    assert commission_rate({"store": Decimal("1.0")}, "subscription") == Decimal("0")


def test_store_purchase_credits_full_amount(db, make_user, post_event):
    affiliate = make_user(referral_code="REF100")
    resp = post_event(checkout_event(amount_total=1000, referral_code="REF100", product_ids=["p1"]))
    assert resp.status_code == 200
    assert resp.json()["result"]["steps"]["referral"]["credited"] is True

    affiliate = _reload(db, affiliate.uid)
    assert affiliate.total_earnings == Decimal("10.00")
    assert affiliate.available_balance == Decimal("10.00")
    assert affiliate.lifetime_earnings == Decimal("10.00")
    assert affiliate.referral_count == 1

    sale = db.query(Sale).one()
    assert sale.account_uid == affiliate.uid
    assert sale.sale_type == "store"
    assert sale.amount == Decimal("10.00")
    assert sale.commission == Decimal("10.00")
    assert sale.status == "completed"
    assert sale.session_id == "cs_test_1"
    assert sale.payment_id == "pi_123"


def test_subscription_purchase_credits_ten_percent(db, make_user, post_event):
    affiliate = make_user(referral_code="REF010")
    resp = post_event(checkout_event(amount_total=1000, referral_code="REF010"))
    assert resp.status_code == 200

    affiliate = _reload(db, affiliate.uid)
    assert affiliate.total_earnings == Decimal("1.00")
    sale = db.query(Sale).one()
    assert sale.sale_type == "subscription"
    assert sale.commission == Decimal("1.00")


def test_policy_table_is_configurable(db, make_user, post_event, policy):
    policy["store"] = Decimal("0.25")
    affiliate = make_user(referral_code="REF025")
    post_event(checkout_event(amount_total=2000, referral_code="REF025", product_ids=["p1"]))
    assert _reload(db, affiliate.uid).total_earnings == Decimal("5.00")


def test_redelivered_checkout_credits_once(db, make_user, post_event):
    affiliate = make_user(referral_code="DUP001")
    event = checkout_event(session_id="cs_dup", amount_total=1000, referral_code="DUP001", product_ids=["p1"])

    first = post_event(event)
    second = post_event(event)
    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["result"]["steps"]["referral"]["reason"] == "duplicate_session"

    affiliate = _reload(db, affiliate.uid)
    assert affiliate.total_earnings == Decimal("10.00")
    assert affiliate.referral_count == 1
    assert db.query(Sale).filter(Sale.session_id == "cs_dup").count() == 1
    assert db.query(Purchase).filter(Purchase.session_id == "cs_dup").count() == 1


def test_increments_accumulate_across_sessions(db, make_user, post_event):
    affiliate = make_user(referral_code="MULTI1")
    post_event(checkout_event(session_id="cs_a", amount_total=1000, referral_code="MULTI1", product_ids=["p1"]))
    post_event(checkout_event(session_id="cs_b", amount_total=550, referral_code="MULTI1", product_ids=["p2"]))

    affiliate = _reload(db, affiliate.uid)
    assert affiliate.total_earnings == Decimal("15.50")
    assert affiliate.referral_count == 2


def test_unknown_referral_code_still_records_purchase(db, make_user, post_event):
    bystander = make_user(referral_code="REAL01")
    resp = post_event(checkout_event(session_id="cs_unknown", referral_code="DOESNOTEXIST"))
    assert resp.status_code == 200
    assert resp.json()["result"]["steps"]["referral"]["reason"] == "not_found"

    bystander = _reload(db, bystander.uid)
    assert bystander.total_earnings == Decimal("0")
    assert bystander.referral_count == 0
    assert db.query(Sale).count() == 0
    purchase = db.query(Purchase).filter(Purchase.session_id == "cs_unknown").one()
    assert purchase.referral_code == "DOESNOTEXIST"


def test_unpaid_checkout_is_skipped(db, make_user, post_event):
    make_user(referral_code="UNPAID")
    resp = post_event(checkout_event(payment_status="unpaid", referral_code="UNPAID"))
    assert resp.status_code == 200
    assert resp.json()["result"]["reason"] == "payment_not_paid"
    assert db.query(Sale).count() == 0
    assert db.query(Purchase).count() == 0


def test_subscription_checkout_with_product_metadata_pays_subscription_rate(db, make_user, post_event):
    affiliate = make_user(referral_code="PLAN10")
    post_event(checkout_event(amount_total=2000, referral_code="PLAN10", product_ids=["p1"], mode="subscription"))

    assert _reload(db, affiliate.uid).total_earnings == Decimal("2.00")
    assert db.query(Sale).one().sale_type == "subscription"

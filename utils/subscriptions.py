"""
Subscription reconciler: applies subscription lifecycle events to an account.

created/updated fully overwrite the subscription fields (safe to replay),
deleted only flips the status to cancelled.
"""
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import logger
from core.errors import NotFoundError, TransientStoreError
from models.user import User, SubscriptionStatus
from utils.events import SubscriptionObject


def _find_account(db: Session, sub: SubscriptionObject) -> tuple[Optional[User], str]:
    if sub.customer:
        user = db.query(User).filter(User.payment_customer_id == sub.customer).first()
        if user:
            return user, "customer_id"
    meta_uid = sub.metadata_account_id()
    if meta_uid:
        user = db.query(User).filter(User.uid == meta_uid).first()
        if user:
            return user, "metadata"
    return None, ""


def apply_subscription_change(db: Session, sub: SubscriptionObject) -> dict:
    """Handle subscription created/updated.

    Raises NotFoundError when no account matches the customer id or metadata.
    """
    user, matched_by = _find_account(db, sub)
    if not user:
        raise NotFoundError(f"no account for customer={sub.customer!r} subscription={sub.id}")

    # A cancelled subscription id stays cancelled; only a new id re-subscribes
    if (
        user.subscription_status == SubscriptionStatus.CANCELLED.value
        and user.subscription_id == sub.id
        and sub.status != SubscriptionStatus.CANCELLED.value
    ):
        logger.info(f"[subscriptions] ignoring stale event for cancelled subscription uid={user.uid} subscription={sub.id}")
        return {"uid": user.uid, "updated": False, "reason": "subscription_cancelled"}

    try:
        user.subscription_status = sub.status
        user.subscription_id = sub.id
        user.subscription_tier = sub.tier()
        start = sub.period_start()
        end = sub.period_end()
        if start:
            user.subscription_start_date = start
        if end:
            user.subscription_end_date = end
        if matched_by == "metadata" and sub.customer and not user.payment_customer_id:
            user.payment_customer_id = sub.customer
        db.commit()
    except SQLAlchemyError as ex:
        db.rollback()
        raise TransientStoreError(f"failed to update subscription for uid={user.uid}: {ex}") from ex

    logger.info(
        f"[subscriptions] updated uid={user.uid} via={matched_by} subscription={sub.id} "
        f"status={sub.status} tier={user.subscription_tier}"
    )
    return {"uid": user.uid, "updated": True, "status": sub.status}


def cancel_subscription(db: Session, sub: SubscriptionObject) -> dict:
    """Handle subscription deleted: status becomes cancelled, nothing else changes.

    A deletion naming a subscription other than the account's current one is dropped.
    """
    user, matched_by = _find_account(db, sub)
    if not user:
        raise NotFoundError(f"no account for customer={sub.customer!r} subscription={sub.id}")

    # Late deletion of a replaced subscription must not cancel the current one
    if user.subscription_id and user.subscription_id != sub.id:
        logger.info(
            f"[subscriptions] ignoring deletion of replaced subscription uid={user.uid} "
            f"subscription={sub.id} current={user.subscription_id}"
        )
        return {"uid": user.uid, "updated": False, "reason": "stale_subscription"}

    try:
        user.subscription_status = SubscriptionStatus.CANCELLED.value
        db.commit()
    except SQLAlchemyError as ex:
        db.rollback()
        raise TransientStoreError(f"failed to cancel subscription for uid={user.uid}: {ex}") from ex

    logger.info(f"[subscriptions] cancelled uid={user.uid} via={matched_by} subscription={sub.id}")
    return {"uid": user.uid, "updated": True, "status": SubscriptionStatus.CANCELLED.value}

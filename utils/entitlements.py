"""
Access grantor: per-product entitlements for storefront purchases.

Purchases by an email without an account are parked as pending entitlements
and promoted by promote_pending_entitlements() when that email registers.
"""
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import logger
from core.errors import TransientStoreError
from models.entitlements import ProductEntitlement, PendingEntitlement
from models.user import User


def find_account_by_email(db: Session, email: str):
    email = (email or "").strip().lower()
    if not email:
        return None
    return db.query(User).filter(func.lower(User.email) == email).first()


def _grant_one(db: Session, account_uid: str, product_id: str, session_id: str) -> bool:
    exists = db.query(ProductEntitlement.id).filter(
        ProductEntitlement.account_uid == account_uid,
        ProductEntitlement.product_id == product_id,
        ProductEntitlement.session_id == session_id,
    ).first()
    if exists:
        return False
    db.add(ProductEntitlement(
        account_uid=account_uid,
        product_id=product_id,
        session_id=session_id,
        status="active",
    ))
    return True


def _queue_one(db: Session, email: str, product_id: str, session_id: str) -> bool:
    exists = db.query(PendingEntitlement.id).filter(
        PendingEntitlement.email == email,
        PendingEntitlement.product_id == product_id,
        PendingEntitlement.session_id == session_id,
    ).first()
    if exists:
        return False
    db.add(PendingEntitlement(
        email=email,
        product_id=product_id,
        session_id=session_id,
        status="pending",
    ))
    return True


def grant_access(db: Session, product_ids: list[str], email: str, session_id: str) -> dict:
    """Grant (or queue) access to each purchased product.

    Every product is committed on its own so one failure does not stop the
    rest. Raises TransientStoreError after all products were attempted if any
    of them failed.
    """
    email = (email or "").strip().lower()
    user = find_account_by_email(db, email)
    account_uid = user.uid if user else None
    mode = "active" if account_uid else "pending"

    created: list[str] = []
    skipped: list[str] = []
    failed: list[str] = []
    for product_id in product_ids:
        try:
            if account_uid:
                wrote = _grant_one(db, account_uid, product_id, session_id)
            else:
                wrote = _queue_one(db, email, product_id, session_id)
            db.commit()
            (created if wrote else skipped).append(product_id)
        except IntegrityError:
            # Another delivery of the same session got there first
            db.rollback()
            skipped.append(product_id)
        except SQLAlchemyError as ex:
            db.rollback()
            failed.append(product_id)
            logger.warning(f"[entitlements] {mode} grant failed product={product_id} session={session_id}: {ex}")

    logger.info(
        f"[entitlements] session={session_id} email={email} mode={mode} "
        f"created={created} skipped={skipped} failed={failed}"
    )
    if failed:
        raise TransientStoreError(f"entitlement writes failed for products={failed} session={session_id}")
    return {"mode": mode, "created": created, "skipped": skipped}


def promote_pending_entitlements(db: Session, user: User) -> list[str]:
    """Turn pending entitlements for the user's email into active grants.

    Caller commits.
    """
    email = (user.email or "").strip().lower()
    if not email:
        return []
    pending = db.query(PendingEntitlement).filter(
        PendingEntitlement.email == email,
        PendingEntitlement.status == "pending",
    ).all()
    promoted: list[str] = []
    now = datetime.now(timezone.utc)
    for row in pending:
        _grant_one(db, user.uid, row.product_id, row.session_id)
        row.status = "claimed"
        row.claimed_by_uid = user.uid
        row.claimed_at = now
        promoted.append(row.product_id)
    if promoted:
        logger.info(f"[entitlements] promoted pending entitlements uid={user.uid} products={promoted}")
    return promoted

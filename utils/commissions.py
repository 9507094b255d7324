"""
Commission processor: credits the referring affiliate for a paid checkout.

The Sale insert and the ledger increments share one transaction. sales.session_id
is unique, so a re-delivered or concurrently delivered checkout loses the insert
and its increments are rolled back with it.
"""
from decimal import Decimal
from typing import Mapping

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import logger, COMMISSION_RATES
from core.errors import NotFoundError, TransientStoreError
from models.sales import Sale, SaleStatus
from models.user import User
from utils.events import CheckoutSessionObject, quantize_money


def get_commission_policy() -> Mapping[str, Decimal]:
    """FastAPI dependency returning the commission policy table (sale type -> rate)."""
    return COMMISSION_RATES


def commission_rate(policy: Mapping[str, Decimal], sale_type: str) -> Decimal:
    rate = policy.get(sale_type)
    if rate is None:
        logger.warning(f"[commissions] no commission rate configured for sale_type={sale_type!r}; using 0")
        return Decimal("0")
    return Decimal(str(rate))


def compute_commission(amount: Decimal, rate: Decimal) -> Decimal:
    return quantize_money(Decimal(amount) * Decimal(rate))


def credit_referral(db: Session, session: CheckoutSessionObject, policy: Mapping[str, Decimal]) -> dict:
    """Write the Sale and increment the affiliate ledger for a referred checkout.

    Raises NotFoundError for an unknown referral code and TransientStoreError
    when the write fails for any reason other than a duplicate session.
    """
    code = session.referral_code()
    affiliate = db.query(User).filter(User.referral_code == code).first()
    if not affiliate:
        raise NotFoundError(f"no affiliate with referral code {code!r}")

    if db.query(Sale.id).filter(Sale.session_id == session.id).first():
        logger.info(f"[commissions] sale already recorded for session={session.id}; skipping credit")
        return {"credited": False, "reason": "duplicate_session"}

    sale_type = session.sale_type()
    amount = session.amount()
    rate = commission_rate(policy, sale_type)
    commission = compute_commission(amount, rate)

    try:
        db.add(Sale(
            account_uid=affiliate.uid,
            referral_code=code,
            amount=amount,
            currency=session.currency_code(),
            commission=commission,
            commission_rate=rate,
            product_ids=session.product_ids(),
            product_names=session.product_names(),
            sale_type=sale_type,
            payment_id=session.payment_intent,
            session_id=session.id,
            customer_email=session.email() or None,
            status=SaleStatus.COMPLETED.value,
        ))
        # Insert first so a duplicate session fails before any increment runs
        db.flush()
        db.query(User).filter(User.uid == affiliate.uid).update(
            {
                User.total_earnings: User.total_earnings + commission,
                User.available_balance: User.available_balance + commission,
                User.lifetime_earnings: User.lifetime_earnings + commission,
                User.referral_count: User.referral_count + 1,
            },
            synchronize_session=False,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"[commissions] concurrent sale insert for session={session.id}; credit skipped")
        return {"credited": False, "reason": "duplicate_session"}
    except SQLAlchemyError as ex:
        db.rollback()
        raise TransientStoreError(f"failed to credit affiliate={affiliate.uid} session={session.id}: {ex}") from ex

    logger.info(
        f"[commissions] credited affiliate={affiliate.uid} session={session.id} sale_type={sale_type} "
        f"amount={amount} rate={rate} commission={commission}"
    )
    return {
        "credited": True,
        "affiliate_uid": affiliate.uid,
        "commission": str(commission),
        "sale_type": sale_type,
    }

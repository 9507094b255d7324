"""
Purchase recorder: one immutable audit row per checkout session.
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import logger
from core.errors import TransientStoreError
from models.purchases import Purchase


def record_purchase(
    db: Session,
    session_id: str,
    customer_email: Optional[str],
    referral_code: Optional[str],
    product_ids: list[str],
    product_names: list[str],
    amount: Decimal,
    currency: str,
    payment_id: Optional[str],
) -> dict:
    if db.query(Purchase.id).filter(Purchase.session_id == session_id).first():
        logger.info(f"[purchases] purchase already recorded for session={session_id}")
        return {"recorded": False, "reason": "duplicate_session"}

    try:
        db.add(Purchase(
            session_id=session_id,
            customer_email=customer_email or None,
            referral_code=referral_code or None,
            product_ids=list(product_ids or []),
            product_names=list(product_names or []),
            amount=amount,
            currency=currency or "USD",
            payment_id=payment_id or None,
        ))
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"[purchases] concurrent insert for session={session_id}; keeping existing record")
        return {"recorded": False, "reason": "duplicate_session"}
    except SQLAlchemyError as ex:
        db.rollback()
        raise TransientStoreError(f"failed to record purchase session={session_id}: {ex}") from ex

    logger.info(f"[purchases] recorded session={session_id} amount={amount} {currency} products={product_ids}")
    return {"recorded": True}


def get_purchase(db: Session, session_id: str) -> Optional[Purchase]:
    return db.query(Purchase).filter(Purchase.session_id == session_id).first()

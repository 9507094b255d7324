"""
Account records: creation with a unique referral code, and referral links.
"""
import secrets
import string
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import logger, FRONTEND_ORIGIN, REFERRAL_CODE_LENGTH
from core.errors import TransientStoreError, ValidationError
from models.user import User, SubscriptionStatus
from utils.entitlements import promote_pending_entitlements

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_MAX_CODE_ATTEMPTS = 10


def generate_referral_code(length: int = REFERRAL_CODE_LENGTH) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(max(4, int(length))))


def referral_link(code: str) -> str:
    return f"{FRONTEND_ORIGIN}/?ref={code}"


def _unused_referral_code(db: Session) -> str:
    for _ in range(_MAX_CODE_ATTEMPTS):
        code = generate_referral_code()
        if not db.query(User.uid).filter(User.referral_code == code).first():
            return code
    raise TransientStoreError("could not allocate a unique referral code")


def create_account(db: Session, uid: str, email: str, display_name: Optional[str] = None) -> tuple[User, bool, list[str]]:
    """Create the account record for a new signup.

    Returns (user, created, promoted_product_ids). An existing uid is returned
    unchanged; its referral code is never reassigned.
    """
    uid = (uid or "").strip()
    email = (email or "").strip().lower()
    if not uid:
        raise ValidationError("uid is required")
    if not email or "@" not in email:
        raise ValidationError("valid email is required")

    existing = db.query(User).filter(User.uid == uid).first()
    if existing:
        return existing, False, []

    try:
        user = User(
            uid=uid,
            email=email,
            display_name=(display_name or "").strip() or email.split("@")[0],
            referral_code=_unused_referral_code(db),
            subscription_status=SubscriptionStatus.INACTIVE.value,
            total_earnings=0,
            available_balance=0,
            lifetime_earnings=0,
            referral_count=0,
        )
        db.add(user)
        db.flush()
        promoted = promote_pending_entitlements(db, user)
        db.commit()
    except IntegrityError as ex:
        db.rollback()
        raise ValidationError(f"account already exists for email={email}") from ex
    except SQLAlchemyError as ex:
        db.rollback()
        raise TransientStoreError(f"failed to create account uid={uid}: {ex}") from ex

    db.refresh(user)
    logger.info(f"[accounts] created uid={uid} email={email} referral_code={user.referral_code} promoted={promoted}")
    return user, True, promoted

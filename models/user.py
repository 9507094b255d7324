"""
User / affiliate account model.
Subscription fields are written only by the subscription reconciler,
ledger fields only by the commission processor (as SQL increments).
"""
import enum
from sqlalchemy import Column, String, DateTime, Integer, Numeric
from sqlalchemy.sql import func
from core.database import Base


class SubscriptionStatus(str, enum.Enum):
    INACTIVE = "inactive"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    UNPAID = "unpaid"


class SubscriptionTier(str, enum.Enum):
    MONTH = "month"
    YEAR = "year"


class User(Base):
    __tablename__ = "users"

    # Primary key - auth provider UID
    uid = Column(String(128), primary_key=True, index=True)

    # Basic info
    email = Column(String(255), unique=True, index=True, nullable=False)
    display_name = Column(String(255), nullable=True)

    # Billing linkage
    payment_customer_id = Column(String(255), nullable=True, index=True)
    subscription_id = Column(String(255), nullable=True)

    # Subscription state
    subscription_status = Column(String(50), nullable=False, default=SubscriptionStatus.INACTIVE.value)
    subscription_tier = Column(String(20), nullable=True)  # month, year
    subscription_start_date = Column(DateTime(timezone=True), nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)

    # Referral identity, never reassigned
    referral_code = Column(String(50), unique=True, index=True, nullable=False)

    # Affiliate ledger
    total_earnings = Column(Numeric(12, 2), nullable=False, default=0)
    available_balance = Column(Numeric(12, 2), nullable=False, default=0)
    lifetime_earnings = Column(Numeric(12, 2), nullable=False, default=0)
    referral_count = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def to_dict(self):
        """Convert to dict for API responses"""
        return {
            "uid": self.uid,
            "email": self.email,
            "displayName": self.display_name,
            "paymentCustomerId": self.payment_customer_id,
            "subscriptionId": self.subscription_id,
            "subscriptionStatus": self.subscription_status,
            "subscriptionTier": self.subscription_tier,
            "subscriptionStartDate": self.subscription_start_date.isoformat() if self.subscription_start_date else None,
            "subscriptionEndDate": self.subscription_end_date.isoformat() if self.subscription_end_date else None,
            "referralCode": self.referral_code,
            "totalEarnings": str(self.total_earnings or 0),
            "availableBalance": str(self.available_balance or 0),
            "lifetimeEarnings": str(self.lifetime_earnings or 0),
            "referralCount": int(self.referral_count or 0),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

import enum
from sqlalchemy import Column, String, JSON, DateTime, Integer, Numeric
from sqlalchemy.sql import func
from core.database import Base


class SaleType(str, enum.Enum):
    STORE = "store"
    SUBSCRIPTION = "subscription"


class SaleStatus(str, enum.Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class Sale(Base):
    """
    Immutable record of a referral-credited sale.
    At most one row per checkout session: the unique session_id is what
    keeps a re-delivered event from crediting the affiliate twice.
    """
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_uid = Column(String(128), index=True, nullable=False)
    referral_code = Column(String(50), index=True, nullable=False)

    amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(10), nullable=False, default="USD")
    commission = Column(Numeric(12, 2), nullable=False, default=0)
    commission_rate = Column(Numeric(6, 4), nullable=False, default=0)

    product_ids = Column(JSON, nullable=False, default=list)
    product_names = Column(JSON, nullable=False, default=list)
    sale_type = Column(String(20), nullable=False, default=SaleType.SUBSCRIPTION.value)

    payment_id = Column(String(255), nullable=True)
    session_id = Column(String(255), unique=True, index=True, nullable=False)
    customer_email = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=SaleStatus.COMPLETED.value)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "accountUid": self.account_uid,
            "referralCode": self.referral_code,
            "amount": str(self.amount),
            "currency": self.currency,
            "commission": str(self.commission),
            "commissionRate": str(self.commission_rate),
            "productIds": list(self.product_ids or []),
            "productNames": list(self.product_names or []),
            "saleType": self.sale_type,
            "paymentId": self.payment_id,
            "sessionId": self.session_id,
            "customerEmail": self.customer_email,
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

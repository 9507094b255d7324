from sqlalchemy import Column, String, JSON, DateTime, Integer, Numeric
from sqlalchemy.sql import func
from core.database import Base


class Purchase(Base):
    """
    Audit record of every completed checkout, one per session,
    written whether or not a referral or access grant applied.
    """
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(255), unique=True, index=True, nullable=False)
    customer_email = Column(String(255), index=True, nullable=True)
    referral_code = Column(String(50), nullable=True)

    product_ids = Column(JSON, nullable=False, default=list)
    product_names = Column(JSON, nullable=False, default=list)

    amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(10), nullable=False, default="USD")
    payment_id = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "productIds": list(self.product_ids or []),
            "productNames": list(self.product_names or []),
            "amount": str(self.amount),
            "currency": self.currency,
            "customerEmail": self.customer_email,
            "referralCode": self.referral_code,
            "paymentId": self.payment_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

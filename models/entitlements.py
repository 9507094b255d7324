"""
Product access models
- product_entitlements: access granted to an existing account
- pending_entitlements: purchases by an email with no account yet,
  promoted to entitlements when that email registers
"""
from sqlalchemy import Column, String, DateTime, Integer, UniqueConstraint
from sqlalchemy.sql import func
from core.database import Base


class ProductEntitlement(Base):
    __tablename__ = "product_entitlements"
    __table_args__ = (
        UniqueConstraint("account_uid", "product_id", "session_id", name="uq_entitlement_account_product_session"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_uid = Column(String(128), index=True, nullable=False)
    product_id = Column(String(255), index=True, nullable=False)
    session_id = Column(String(255), index=True, nullable=False)
    status = Column(String(20), nullable=False, default="active")
    granted_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class PendingEntitlement(Base):
    __tablename__ = "pending_entitlements"
    __table_args__ = (
        UniqueConstraint("email", "product_id", "session_id", name="uq_pending_email_product_session"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), index=True, nullable=False)
    product_id = Column(String(255), nullable=False)
    session_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending, claimed
    purchased_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    claimed_by_uid = Column(String(128), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

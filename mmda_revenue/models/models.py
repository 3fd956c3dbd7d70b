from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Numeric,
    JSON,
    Index,
)
from sqlalchemy.sql import func

from mmda_revenue.db.base import Base


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    phone = Column(String(32), nullable=True, unique=True)
    full_name = Column(String(255), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_superuser = Column(Boolean, default=False, nullable=False)
    # Role-based access control: admin, staff, taxpayer
    role = Column(String(50), nullable=False, default="taxpayer", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Payment(Base):
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    # unique: at most one payment row per caller reference
    payment_reference = Column(String(255), nullable=False, unique=True)
    transaction_id = Column(String(255), nullable=True, unique=True)
    payment_method = Column(String(32), nullable=False, index=True)
    provider = Column(String(128), nullable=True)
    # adapter key (mtn, gcb, ...) used to route status checks back to the same backend
    provider_key = Column(String(32), nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    fee = Column(Numeric(15, 2), nullable=False, default=0)
    total_amount = Column(Numeric(15, 2), nullable=False)
    # pending, processing, success, failed, cancelled
    status = Column(String(32), nullable=False, default="pending", index=True)
    description = Column(String(1024), nullable=True)
    requires_verification = Column(Boolean, default=False, nullable=False)
    payment_details = Column(JSON, nullable=True)
    receipt_url = Column(String(512), nullable=True)
    estimated_settlement_time = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    paid_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_payments_user_status", "user_id", "status"),)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True)
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(255), nullable=False)
    object_type = Column(String(128), nullable=True)
    object_id = Column(String(128), nullable=True)
    detail = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

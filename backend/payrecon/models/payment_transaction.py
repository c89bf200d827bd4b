from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Numeric, DateTime, JSON, ForeignKey

from payrecon.utils.clock import utcnow
from .core import Base


class PaymentTransaction(Base):
    """One row per gateway-side money movement attempt. Never deleted."""
    __tablename__ = 'payment_transactions'
    # Status lifecycle: PENDING -> COMPLETED (terminal) | PENDING -> FAILED (terminal)
    STATUS_PENDING = 'PENDING'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_FAILED = 'FAILED'
    ALL_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_FAILED)
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

    SOURCE_STK = 'STK'
    SOURCE_C2B = 'C2B'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source: Mapped[str] = mapped_column(String(8), nullable=False, default=SOURCE_STK)
    merchant_request_id: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True)
    checkout_request_id: Mapped[Optional[str]] = mapped_column(String(128), unique=True, nullable=True, index=True)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    account_reference: Mapped[str] = mapped_column(String(64), nullable=False)
    transaction_desc: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    result_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    result_desc: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mpesa_receipt_number: Mapped[Optional[str]] = mapped_column(String(32), unique=True, nullable=True, index=True)
    # Gateway format YYYYMMDDHHmmss, kept verbatim
    transaction_date: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id'), nullable=False, index=True)
    initiated_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    # Sale this payment has been bound to (push correlation or reconciliation match)
    sale_id: Mapped[Optional[int]] = mapped_column(ForeignKey('sales.id'), nullable=True, index=True)
    raw_payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

__all__ = ['PaymentTransaction']

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Boolean, Numeric, DateTime, ForeignKey

from payrecon.utils.clock import utcnow
from .core import Base


class Sale(Base):
    """Narrow projection of the POS sale: only the M-Pesa verification fields are written here."""
    __tablename__ = 'sales'
    # mpesa_verification_status lifecycle: PENDING -> VERIFIED | PENDING -> FAILED; NOT_APPLICABLE is terminal
    VERIFICATION_NOT_APPLICABLE = 'NOT_APPLICABLE'
    VERIFICATION_PENDING = 'PENDING'
    VERIFICATION_VERIFIED = 'VERIFIED'
    VERIFICATION_FAILED = 'FAILED'

    METHOD_AUTOMATIC = 'AUTOMATIC'
    METHOD_MANUAL_MANAGER = 'MANUAL_MANAGER'
    METHOD_MANUAL_ADMIN = 'MANUAL_ADMIN'
    METHOD_NOT_VERIFIED = 'NOT_VERIFIED'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    receipt_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id'), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    flagged_for_verification: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    flagged_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    mpesa_verification_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=VERIFICATION_NOT_APPLICABLE, index=True
    )
    mpesa_receipt_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    verified_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    verification_method: Mapped[str] = mapped_column(String(16), nullable=False, default=METHOD_NOT_VERIFIED)
    verification_notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    payments: Mapped[List['SalePayment']] = relationship(
        'SalePayment', back_populates='sale', cascade='all, delete-orphan', order_by='SalePayment.id'
    )

    @property
    def mpesa_amount(self) -> Optional[Decimal]:
        """Amount of the sale's M-Pesa leg, or None when it was not paid (partly) by M-Pesa."""
        for p in self.payments:
            if p.method == SalePayment.METHOD_MPESA:
                return p.amount
        return None

    def verification_snapshot(self) -> dict:
        return {
            'status': self.mpesa_verification_status,
            'flagged': self.flagged_for_verification,
            'mpesaCode': self.mpesa_receipt_number,
            'verificationMethod': self.verification_method,
        }


class SalePayment(Base):
    """A payment leg of a sale (split tender)."""
    __tablename__ = 'sale_payments'
    METHOD_CASH = 'CASH'
    METHOD_MPESA = 'MPESA'
    METHOD_CARD = 'CARD'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sale_id: Mapped[int] = mapped_column(ForeignKey('sales.id'), nullable=False, index=True)
    method: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    sale: Mapped[Sale] = relationship('Sale', back_populates='payments')

__all__ = ['Sale', 'SalePayment']

from __future__ import annotations
"""Checkout-side detection of a till deposit that just landed."""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select

from payrecon.models.payment_transaction import PaymentTransaction

logger = logging.getLogger(__name__)

POLL_WINDOW = timedelta(minutes=5)


def find_recent_till_payment(session, clock, branch_id: int, amount: Optional[Decimal] = None,
                             reference: Optional[str] = None) -> Optional[PaymentTransaction]:
    """Most recent completed, not yet bound payment in the branch from the last five minutes.

    ``amount`` must match exactly when given. ``reference`` is only logged: till payers
    rarely type the sale reference correctly.
    """
    stmt = select(PaymentTransaction).where(
        PaymentTransaction.status == PaymentTransaction.STATUS_COMPLETED,
        PaymentTransaction.mpesa_receipt_number.is_not(None),
        PaymentTransaction.branch_id == branch_id,
        PaymentTransaction.sale_id.is_(None),
        PaymentTransaction.created_at >= clock.now() - POLL_WINDOW,
    )
    if amount is not None:
        stmt = stmt.where(PaymentTransaction.amount == amount)
    tx = session.execute(
        stmt.order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc()).limit(1)
    ).scalar_one_or_none()
    if tx is not None:
        logger.info('Till payment detected for reference=%s receipt=%s amount=%s',
                    reference, tx.mpesa_receipt_number, tx.amount)
    return tx

__all__ = ['find_recent_till_payment', 'POLL_WINDOW']

from __future__ import annotations
"""Staff fallback: check a receipt code typed from the customer's phone.

Read-only. Answers "is this receipt valid evidence of payment for this amount in this
branch?"; marking the sale verified is a separate step (``confirm_manual``).
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select

from payrecon.errors import AmountMismatchError, DuplicateEventError, InvalidTransitionError, NotFoundError, ValidationError
from payrecon.models.payment_transaction import PaymentTransaction
from payrecon.models.sale import Sale
from payrecon.services.matcher import AMOUNT_TOLERANCE, within_tolerance
from payrecon.services.sale_verification import SaleVerifier
from payrecon.utils.fsm import SALE_VERIFICATION_FSM
from payrecon.utils.validation import parse_amount

logger = logging.getLogger(__name__)

LOOKBACK = timedelta(hours=24)
MIN_RECEIPT_LENGTH = 6
NOT_FOUND_MESSAGE = 'M-Pesa receipt not found or expired. Please verify the code is correct.'


def normalize_receipt_code(raw: Any) -> str:
    code = str(raw or '').strip().upper()
    if len(code) < MIN_RECEIPT_LENGTH:
        raise ValidationError(
            f'Invalid M-Pesa receipt code format. Must be at least {MIN_RECEIPT_LENGTH} characters.'
        )
    return code


@dataclass(frozen=True)
class ReceiptEvidence:
    transaction_id: int
    receipt_number: str
    amount: Decimal
    phone_number: str
    sale_id: Optional[int] = None


class ManualVerifier:
    def __init__(self, session, clock, lookback: timedelta = LOOKBACK, tolerance: Decimal = AMOUNT_TOLERANCE):
        self.session = session
        self.clock = clock
        self.lookback = lookback
        self.tolerance = tolerance

    def verify_receipt(self, receipt_code: Any, expected_amount: Any, branch_id: int) -> ReceiptEvidence:
        code = normalize_receipt_code(receipt_code)
        expected = parse_amount(expected_amount, 'expectedAmount')
        since = self.clock.now() - self.lookback
        tx = self.session.execute(
            select(PaymentTransaction).where(
                PaymentTransaction.mpesa_receipt_number == code,
                PaymentTransaction.status == PaymentTransaction.STATUS_COMPLETED,
                PaymentTransaction.branch_id == branch_id,
                PaymentTransaction.created_at >= since,
            )
        ).scalar_one_or_none()
        if tx is None:
            logger.info('Manual verification: receipt %s not found in branch %s', code, branch_id)
            raise NotFoundError(NOT_FOUND_MESSAGE)
        if not within_tolerance(expected, tx.amount, self.tolerance):
            logger.info('Manual verification: receipt %s amount %s, expected %s', code, tx.amount, expected)
            raise AmountMismatchError(tx.amount, expected)
        logger.info('Manual verification: receipt %s verified amount=%s', code, tx.amount)
        return ReceiptEvidence(tx.id, tx.mpesa_receipt_number, tx.amount, tx.phone_number, tx.sale_id)

    def confirm_manual(self, sale_id: int, receipt_code: Any, method: str, actor_id: Optional[int], branch_id: int) -> Sale:
        """Verify a flagged sale from a typed receipt code (MANUAL_MANAGER / MANUAL_ADMIN). Commits."""
        if method not in (Sale.METHOD_MANUAL_MANAGER, Sale.METHOD_MANUAL_ADMIN):
            raise ValidationError('method must be MANUAL_MANAGER or MANUAL_ADMIN')
        sale = self.session.get(Sale, sale_id)
        if sale is None or sale.branch_id != branch_id:
            raise NotFoundError(f'Sale {sale_id} not found')
        code = normalize_receipt_code(receipt_code)
        if sale.mpesa_verification_status == Sale.VERIFICATION_VERIFIED and sale.mpesa_receipt_number == code:
            raise DuplicateEventError(f'Sale {sale_id} is already verified with receipt {code}', sale_id=sale_id)
        SALE_VERIFICATION_FSM.assert_can_transition(sale.mpesa_verification_status, Sale.VERIFICATION_VERIFIED)
        expected = sale.mpesa_amount
        if expected is None:
            raise ValidationError(f'Sale {sale_id} has no M-Pesa payment to verify')
        evidence = self.verify_receipt(code, expected, branch_id)
        if evidence.sale_id is not None and evidence.sale_id != sale_id:
            raise InvalidTransitionError(
                f'Receipt {evidence.receipt_number} is already applied to another sale',
                sale_id=evidence.sale_id,
            )
        tx = self.session.get(PaymentTransaction, evidence.transaction_id)
        label = 'admin' if method == Sale.METHOD_MANUAL_ADMIN else 'manager'
        try:
            SaleVerifier(self.session, self.clock).verify(
                sale_id,
                evidence.receipt_number,
                method,
                actor_id,
                f'Manually verified by {label} (user {actor_id}) - Receipt: {evidence.receipt_number}',
                action='MPESA_MANUAL_VERIFIED',
                amount=evidence.amount,
                transaction=tx,
            )
        except InvalidTransitionError:
            self.session.rollback()
            raise
        self.session.commit()
        return sale

__all__ = ['ManualVerifier', 'ReceiptEvidence', 'normalize_receipt_code', 'LOOKBACK', 'MIN_RECEIPT_LENGTH', 'NOT_FOUND_MESSAGE']

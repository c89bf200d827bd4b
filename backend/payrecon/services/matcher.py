from __future__ import annotations
"""Bind an unsolicited till payment to the sale that is waiting for it.

Best effort only. There is no shared reference between a till deposit and a sale, so a
payment is matched on branch, recency of the "complete later" flag and amount:

  * candidates: sales in the payment's branch that are flagged, PENDING, and were
    flagged at most RECONCILIATION_WINDOW ago (boundary inclusive);
  * most recently flagged first;
  * the first whose M-Pesa leg is within AMOUNT_TOLERANCE of the payment (inclusive).

Two same-amount sales flagged inside the window are ambiguous: the most recent one
wins and a warning is logged. A match is never undone.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select

from payrecon.errors import InvalidTransitionError
from payrecon.models.payment_transaction import PaymentTransaction
from payrecon.models.sale import Sale
from payrecon.services.sale_verification import SaleVerifier

logger = logging.getLogger(__name__)

RECONCILIATION_WINDOW = timedelta(minutes=5)
AMOUNT_TOLERANCE = Decimal('1.00')


def within_tolerance(expected: Optional[Decimal], actual: Decimal, tolerance: Decimal = AMOUNT_TOLERANCE) -> bool:
    if expected is None:
        return False
    return abs(Decimal(actual) - Decimal(expected)) <= tolerance


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    sale_id: Optional[int] = None
    reason: str = ''


class ReconciliationMatcher:
    def __init__(self, session, clock, window: timedelta = RECONCILIATION_WINDOW, tolerance: Decimal = AMOUNT_TOLERANCE):
        self.session = session
        self.clock = clock
        self.window = window
        self.tolerance = tolerance

    def candidates(self, branch_id: int) -> List[Sale]:
        cutoff = self.clock.now() - self.window
        return self.session.execute(
            select(Sale)
            .where(
                Sale.flagged_for_verification.is_(True),
                Sale.mpesa_verification_status == Sale.VERIFICATION_PENDING,
                Sale.branch_id == branch_id,
                Sale.flagged_at >= cutoff,
            )
            .order_by(Sale.flagged_at.desc(), Sale.id.desc())
        ).scalars().all()

    def match(self, tx: PaymentTransaction) -> MatchResult:
        """Try to verify one flagged sale with ``tx``. Commits on match."""
        if tx.status != PaymentTransaction.STATUS_COMPLETED or not tx.mpesa_receipt_number:
            return MatchResult(False, reason='transaction not completed')
        if tx.sale_id is not None:
            return MatchResult(False, sale_id=tx.sale_id, reason='transaction already bound')

        pool = self.candidates(tx.branch_id)
        if not pool:
            logger.info('No flagged sale awaiting receipt %s in branch %s', tx.mpesa_receipt_number, tx.branch_id)
            return MatchResult(False, reason='no flagged sale in window')
        eligible = [s for s in pool if within_tolerance(s.mpesa_amount, tx.amount, self.tolerance)]
        if not eligible:
            logger.info(
                'Auto-verify skipped for receipt %s: received %s, flagged sales expect %s',
                tx.mpesa_receipt_number, tx.amount, [str(s.mpesa_amount) for s in pool],
            )
            return MatchResult(False, reason='amount mismatch')
        if len(eligible) > 1:
            logger.warning(
                'Ambiguous till payment %s (%s): sales %s all match; binding most recently flagged sale %s',
                tx.mpesa_receipt_number, tx.amount, [s.id for s in eligible], eligible[0].id,
            )

        chosen = eligible[0]
        try:
            SaleVerifier(self.session, self.clock).verify(
                chosen.id,
                tx.mpesa_receipt_number,
                Sale.METHOD_AUTOMATIC,
                tx.initiated_by,
                f'Auto-verified via C2B callback - Receipt: {tx.mpesa_receipt_number}',
                action='MPESA_AUTO_VERIFIED',
                amount=tx.amount,
                transaction=tx,
            )
        except InvalidTransitionError:
            self.session.rollback()
            logger.info('Sale %s was resolved concurrently; receipt %s left unmatched', chosen.id, tx.mpesa_receipt_number)
            return MatchResult(False, reason='sale resolved concurrently')
        self.session.commit()
        logger.info('Auto-verified sale %s with receipt %s', chosen.id, tx.mpesa_receipt_number)
        return MatchResult(True, sale_id=chosen.id, reason='matched')

__all__ = ['ReconciliationMatcher', 'MatchResult', 'RECONCILIATION_WINDOW', 'AMOUNT_TOLERANCE', 'within_tolerance']

from __future__ import annotations
"""Writer for the engine-owned verification fields of a Sale.

The PENDING -> VERIFIED move is a compare-and-swap: the UPDATE only matches while the
sale is still PENDING, so an automatic match and a manual confirmation racing on the
same sale cannot both win. The loser gets InvalidTransitionError.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import update

from payrecon.errors import InvalidTransitionError, NotFoundError
from payrecon.models.payment_transaction import PaymentTransaction
from payrecon.models.sale import Sale
from payrecon.services.audit import record_audit
from payrecon.utils.fsm import SALE_VERIFICATION_FSM

logger = logging.getLogger(__name__)


class SaleVerifier:
    def __init__(self, session, clock):
        self.session = session
        self.clock = clock

    def verify(
        self,
        sale_id: int,
        receipt_number: str,
        method: str,
        actor_id: Optional[int],
        notes: str,
        action: str,
        amount: Optional[Decimal] = None,
        transaction: Optional[PaymentTransaction] = None,
    ) -> Sale:
        """Mark a PENDING sale VERIFIED and write one audit entry. Does not commit."""
        sale = self.session.get(Sale, sale_id)
        if sale is None:
            raise NotFoundError(f'Sale {sale_id} not found')
        SALE_VERIFICATION_FSM.assert_can_transition(sale.mpesa_verification_status, Sale.VERIFICATION_VERIFIED)
        old = sale.verification_snapshot()
        now = self.clock.now()
        result = self.session.execute(
            update(Sale)
            .where(Sale.id == sale_id, Sale.mpesa_verification_status == Sale.VERIFICATION_PENDING)
            .values(
                mpesa_verification_status=Sale.VERIFICATION_VERIFIED,
                flagged_for_verification=False,
                mpesa_receipt_number=receipt_number,
                verified_at=now,
                verified_by=actor_id,
                verification_method=method,
                verification_notes=notes,
                updated_at=now,
            )
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount != 1:
            # another writer committed first
            self.session.refresh(sale)
            raise InvalidTransitionError(
                f'Sale {sale_id} is no longer awaiting verification ({sale.mpesa_verification_status})',
                current=sale.mpesa_verification_status,
            )
        self.session.refresh(sale)
        if transaction is not None and transaction.sale_id is None:
            transaction.sale_id = sale_id
        new = sale.verification_snapshot()
        if amount is not None:
            new['amount'] = str(amount)
        record_audit(self.session, actor_id, action, 'SALE', sale_id, old, new, at=now)
        logger.info('Sale %s verified method=%s receipt=%s', sale_id, method, receipt_number)
        return sale

__all__ = ['SaleVerifier']

from __future__ import annotations
"""Customer-to-business (till / paybill) notifications.

The gateway runs a two-phase contract: ``validate`` asks whether to accept a payment
before the customer is debited, ``confirm`` reports a completed debit. Confirmations
carry no merchant-side correlation id; the receipt (TransID) is the only reliable key.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from payrecon.errors import ValidationError
from payrecon.models.payment_transaction import PaymentTransaction
from payrecon.services.audit import record_audit
from payrecon.services.directory import ensure_system_user, resolve_default_branch
from payrecon.services.matcher import MatchResult, ReconciliationMatcher
from payrecon.utils.masking import mask_phone
from payrecon.utils.validation import parse_amount

logger = logging.getLogger(__name__)

TILL_REFERENCE = 'TILL-PAYMENT'

OUTCOME_RECORDED = 'recorded'
OUTCOME_DUPLICATE = 'duplicate'
OUTCOME_NO_BRANCH = 'no_branch'


@dataclass(frozen=True)
class C2BConfirmation:
    trans_id: str
    amount: Decimal
    msisdn: str
    bill_ref_number: Optional[str]
    trans_time: Optional[str]
    business_short_code: Optional[str]
    payer_name: Optional[str] = None


def parse_confirmation(payload: Any) -> C2BConfirmation:
    if not isinstance(payload, dict):
        raise ValidationError('Invalid C2B confirmation: body must be an object')
    trans_id = str(payload.get('TransID') or '').strip()
    if not trans_id:
        raise ValidationError('Invalid C2B confirmation: Missing TransID')
    amount = parse_amount(payload.get('TransAmount'), 'TransAmount')
    names = [str(payload.get(k)).strip() for k in ('FirstName', 'MiddleName', 'LastName') if payload.get(k)]
    bill_ref = str(payload.get('BillRefNumber') or '').strip() or None
    return C2BConfirmation(
        trans_id=trans_id.upper(),
        amount=amount,
        msisdn=str(payload.get('MSISDN') or '').strip(),
        bill_ref_number=bill_ref,
        trans_time=str(payload['TransTime']) if payload.get('TransTime') else None,
        business_short_code=str(payload['BusinessShortCode']) if payload.get('BusinessShortCode') else None,
        payer_name=' '.join(names) or None,
    )


# An acceptance rule returns a rejection reason, or None to accept. Verdicts are advisory:
# the gateway is always answered with the fixed ack, so a decline only reaches the log.
AcceptanceRule = Callable[[Dict[str, Any]], Optional[str]]


@dataclass(frozen=True)
class Acceptance:
    accepted: bool
    reason: str = 'Accepted'


@dataclass(frozen=True)
class C2BOutcome:
    outcome: str
    receipt_number: Optional[str] = None
    transaction_id: Optional[int] = None
    match: Optional[MatchResult] = None


class C2BIngestor:
    def __init__(self, session, clock, rules: Optional[List[AcceptanceRule]] = None):
        self.session = session
        self.clock = clock
        self.rules: List[AcceptanceRule] = list(rules or [])

    def validate(self, payload: Dict[str, Any]) -> Acceptance:
        """Run acceptance rules (none by default) and report the first decline.

        A rule that raises is treated as accept. The caller logs the verdict; it never
        changes the response sent to the gateway.
        """
        for rule in self.rules:
            try:
                reason = rule(payload or {})
            except Exception:
                logger.exception('C2B acceptance rule %r failed; accepting', rule)
                continue
            if reason:
                logger.warning('C2B validation rule declined TransID=%s: %s', (payload or {}).get('TransID'), reason)
                return Acceptance(False, reason)
        return Acceptance(True)

    def confirm(self, payload: Any) -> C2BOutcome:
        confirmation = parse_confirmation(payload)
        receipt = confirmation.trans_id
        existing = self.session.execute(
            select(PaymentTransaction).where(PaymentTransaction.mpesa_receipt_number == receipt)
        ).scalar_one_or_none()
        if existing is not None:
            logger.info('C2B confirmation %s already processed (transaction %s)', receipt, existing.id)
            return C2BOutcome(OUTCOME_DUPLICATE, receipt, existing.id)

        branch = resolve_default_branch(self.session)
        if branch is None:
            logger.error('C2B confirmation %s (KES %s) received but no active branch exists; needs manual follow-up',
                         receipt, confirmation.amount)
            return C2BOutcome(OUTCOME_NO_BRANCH, receipt)
        actor = ensure_system_user(self.session, branch.id)
        now = self.clock.now()
        tx = PaymentTransaction(
            source=PaymentTransaction.SOURCE_C2B,
            merchant_request_id=f'C2B-{receipt}',
            checkout_request_id=receipt,
            phone_number=confirmation.msisdn,
            amount=confirmation.amount,
            account_reference=(confirmation.bill_ref_number or TILL_REFERENCE)[:64],
            transaction_desc=confirmation.payer_name,
            mpesa_receipt_number=receipt,
            status=PaymentTransaction.STATUS_COMPLETED,
            result_code='0',
            result_desc='C2B Payment received - awaiting sale completion',
            transaction_date=confirmation.trans_time,
            branch_id=branch.id,
            initiated_by=actor.id,
            raw_payload=payload,
            completed_at=now,
            created_at=now,
        )
        try:
            self.session.add(tx)
            self.session.flush()
        except IntegrityError:
            # same TransID inserted by a concurrent delivery
            self.session.rollback()
            logger.info('C2B confirmation %s inserted concurrently; treating as duplicate', receipt)
            return C2BOutcome(OUTCOME_DUPLICATE, receipt)
        record_audit(
            self.session, actor.id, 'MPESA.C2B.RECEIVED', 'PaymentTransaction', tx.id,
            None,
            {'status': tx.status, 'mpesaReceiptNumber': receipt, 'amount': str(tx.amount), 'branchId': branch.id},
            at=now,
        )
        self.session.commit()
        logger.info('C2B payment stored receipt=%s amount=%s phone=%s branch=%s',
                    receipt, tx.amount, mask_phone(tx.phone_number), branch.id)

        match = self._try_match(tx)
        return C2BOutcome(OUTCOME_RECORDED, receipt, tx.id, match)

    def _try_match(self, tx: PaymentTransaction) -> Optional[MatchResult]:
        try:
            return ReconciliationMatcher(self.session, self.clock).match(tx)
        except Exception:
            logger.exception('Auto-verify failed for receipt %s; left for manual reconciliation', tx.mpesa_receipt_number)
            self.session.rollback()
            return None

__all__ = [
    'C2BConfirmation', 'parse_confirmation', 'Acceptance', 'AcceptanceRule', 'C2BOutcome', 'C2BIngestor',
    'OUTCOME_RECORDED', 'OUTCOME_DUPLICATE', 'OUTCOME_NO_BRANCH', 'TILL_REFERENCE'
]

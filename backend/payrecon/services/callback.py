from __future__ import annotations
"""Finalize push-initiated transactions from the gateway's asynchronous callback.

Payload shape (Daraja STK callback)::

    {"Body": {"stkCallback": {
        "MerchantRequestID": ..., "CheckoutRequestID": ..., "ResultCode": 0, "ResultDesc": ...,
        "CallbackMetadata": {"Item": [{"Name": "Amount", "Value": 1500}, ...]}}}}

CallbackMetadata is present only when ResultCode == 0 and its items arrive in any order.
Redelivery is expected; a row already COMPLETED/FAILED is never written again except
to fill an empty result description.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy import select, update

from payrecon.errors import InvalidTransitionError, ValidationError
from payrecon.models.payment_transaction import PaymentTransaction
from payrecon.models.sale import Sale
from payrecon.services.audit import record_audit
from payrecon.services.matcher import within_tolerance
from payrecon.services.sale_verification import SaleVerifier
from payrecon.utils.fsm import TX_FSM

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('MerchantRequestID', 'CheckoutRequestID', 'ResultCode', 'ResultDesc')
METADATA_FIELDS = ('Amount', 'MpesaReceiptNumber', 'TransactionDate', 'PhoneNumber')

OUTCOME_APPLIED = 'applied'
OUTCOME_DUPLICATE = 'duplicate'
OUTCOME_UNMATCHED = 'unmatched'
OUTCOME_INVALID = 'invalid'


@dataclass(frozen=True)
class StkCallback:
    merchant_request_id: str
    checkout_request_id: str
    result_code: int
    result_desc: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0

    @property
    def amount(self) -> Optional[Decimal]:
        raw = self.metadata.get('Amount')
        if raw is None:
            return None
        try:
            return Decimal(str(raw)).quantize(Decimal('0.01'))
        except InvalidOperation:
            return None

    @property
    def receipt_number(self) -> Optional[str]:
        raw = self.metadata.get('MpesaReceiptNumber')
        return str(raw) if raw is not None else None

    @property
    def transaction_date(self) -> Optional[str]:
        raw = self.metadata.get('TransactionDate')
        return str(raw) if raw is not None else None

    @property
    def phone_number(self) -> Optional[str]:
        raw = self.metadata.get('PhoneNumber')
        return str(raw) if raw is not None else None


def parse_stk_callback(payload: Any) -> StkCallback:
    """Validate the raw callback and resolve the metadata items into a name->value map."""
    if not isinstance(payload, dict) or not isinstance(payload.get('Body'), dict):
        raise ValidationError('Invalid callback structure: Missing Body')
    stk = payload['Body'].get('stkCallback')
    if not isinstance(stk, dict):
        raise ValidationError('Invalid callback structure: Missing stkCallback')
    missing = [f for f in REQUIRED_FIELDS if stk.get(f) is None]
    if missing:
        raise ValidationError(f"Invalid callback structure: Missing required fields {', '.join(missing)}", missing=missing)
    try:
        result_code = int(str(stk['ResultCode']).strip())
    except ValueError:
        raise ValidationError(f"Invalid callback structure: ResultCode {stk['ResultCode']!r} is not numeric")
    metadata: Dict[str, Any] = {}
    if result_code == 0:
        items = (stk.get('CallbackMetadata') or {}).get('Item') or []
        if isinstance(items, list):
            for item in items:
                if isinstance(item, dict) and item.get('Name') in METADATA_FIELDS:
                    metadata[item['Name']] = item.get('Value')
    return StkCallback(
        merchant_request_id=str(stk['MerchantRequestID']),
        checkout_request_id=str(stk['CheckoutRequestID']),
        result_code=result_code,
        result_desc=str(stk['ResultDesc']),
        metadata=metadata,
    )


@dataclass(frozen=True)
class CallbackOutcome:
    outcome: str
    checkout_request_id: Optional[str] = None
    transaction_id: Optional[int] = None
    status: Optional[str] = None
    sale_id: Optional[int] = None


class CallbackProcessor:
    def __init__(self, session, clock):
        self.session = session
        self.clock = clock

    def process(self, payload: Any) -> CallbackOutcome:
        try:
            callback = parse_stk_callback(payload)
        except ValidationError as e:
            logger.error('Rejected STK callback: %s', e.message)
            return CallbackOutcome(OUTCOME_INVALID)
        return self.apply(callback, raw=payload)

    def apply(self, callback: StkCallback, raw: Optional[Dict[str, Any]] = None) -> CallbackOutcome:
        tx = self.session.execute(
            select(PaymentTransaction).where(PaymentTransaction.checkout_request_id == callback.checkout_request_id)
        ).scalar_one_or_none()
        if tx is None:
            logger.error(
                'STK callback for unknown CheckoutRequestID=%s MerchantRequestID=%s ResultCode=%s; needs manual follow-up',
                callback.checkout_request_id, callback.merchant_request_id, callback.result_code,
            )
            return CallbackOutcome(OUTCOME_UNMATCHED, checkout_request_id=callback.checkout_request_id)
        if tx.is_terminal:
            return self._duplicate(tx, callback)

        target = PaymentTransaction.STATUS_COMPLETED if callback.succeeded else PaymentTransaction.STATUS_FAILED
        TX_FSM.assert_can_transition(tx.status, target)
        now = self.clock.now()
        values = {
            'status': target,
            'result_code': str(callback.result_code),
            'result_desc': callback.result_desc,
            'completed_at': now,
            'updated_at': now,
            'raw_payload': raw,
        }
        holder = self._receipt_holder(tx, callback) if callback.succeeded else None
        if callback.succeeded:
            values['transaction_date'] = callback.transaction_date
            if holder is None:
                values['mpesa_receipt_number'] = callback.receipt_number
            else:
                # receipt already stored by the till confirmation; keep it on that row only
                values['result_desc'] = f'{callback.result_desc} (receipt {callback.receipt_number} already recorded on transaction {holder.id})'
                logger.warning(
                    'STK receipt %s for checkout=%s already recorded on transaction %s',
                    callback.receipt_number, tx.checkout_request_id, holder.id,
                )
        result = self.session.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == tx.id, PaymentTransaction.status == PaymentTransaction.STATUS_PENDING)
            .values(**values)
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount != 1:
            # a concurrent delivery finalized it between our read and write
            self.session.rollback()
            return CallbackOutcome(OUTCOME_DUPLICATE, callback.checkout_request_id, tx.id, tx.status)

        new_value = {'status': target, 'resultCode': callback.result_code}
        if callback.succeeded:
            new_value.update({
                'mpesaReceiptNumber': callback.receipt_number,
                'amount': str(callback.amount) if callback.amount is not None else None,
            })
            if holder is not None:
                new_value['duplicateOf'] = holder.id
            if callback.amount is not None and callback.amount != tx.amount:
                logger.warning(
                    'STK callback amount %s differs from requested %s for checkout=%s',
                    callback.amount, tx.amount, tx.checkout_request_id,
                )
        record_audit(
            self.session, tx.initiated_by,
            'MPESA.CALLBACK.COMPLETED' if callback.succeeded else 'MPESA.CALLBACK.FAILED',
            'PaymentTransaction', tx.id,
            {'status': PaymentTransaction.STATUS_PENDING}, new_value, at=now,
        )
        sale_id = self._verify_correlated_sale(tx, callback, holder) if callback.succeeded else None
        self.session.commit()
        logger.info('STK callback applied checkout=%s status=%s receipt=%s', tx.checkout_request_id, target, callback.receipt_number)
        return CallbackOutcome(OUTCOME_APPLIED, tx.checkout_request_id, tx.id, target, sale_id)

    def _receipt_holder(self, tx: PaymentTransaction, callback: StkCallback) -> Optional[PaymentTransaction]:
        """Another row already carrying this receipt, e.g. a C2B confirmation delivered first."""
        if not callback.receipt_number:
            return None
        return self.session.execute(
            select(PaymentTransaction).where(
                PaymentTransaction.mpesa_receipt_number == callback.receipt_number,
                PaymentTransaction.id != tx.id,
            )
        ).scalar_one_or_none()

    def _verify_correlated_sale(
        self,
        tx: PaymentTransaction,
        callback: StkCallback,
        holder: Optional[PaymentTransaction] = None,
    ) -> Optional[int]:
        """Verify the sale this push was raised for, in the same transaction as the row update."""
        if tx.sale_id is None:
            return None
        sale = self.session.get(Sale, tx.sale_id)
        if sale is None or sale.mpesa_verification_status != Sale.VERIFICATION_PENDING:
            return None
        if sale.branch_id != tx.branch_id:
            logger.warning('Sale %s belongs to branch %s, push checkout=%s to branch %s; not verified',
                           sale.id, sale.branch_id, tx.checkout_request_id, tx.branch_id)
            return None
        paid = callback.amount if callback.amount is not None else tx.amount
        if not within_tolerance(sale.mpesa_amount, paid):
            logger.warning('STK payment %s for checkout=%s does not cover sale %s M-Pesa amount %s; left PENDING',
                           paid, tx.checkout_request_id, sale.id, sale.mpesa_amount)
            return None
        if holder is not None and holder.sale_id not in (None, sale.id):
            logger.warning('Receipt %s already bound to sale %s; sale %s left PENDING',
                           callback.receipt_number, holder.sale_id, sale.id)
            return None
        try:
            SaleVerifier(self.session, self.clock).verify(
                sale.id,
                callback.receipt_number,
                Sale.METHOD_AUTOMATIC,
                tx.initiated_by,
                f'Auto-verified via STK callback - Receipt: {callback.receipt_number}',
                action='MPESA_AUTO_VERIFIED',
                amount=paid,
                transaction=holder,
            )
        except InvalidTransitionError:
            logger.info('Sale %s already resolved; STK receipt %s not applied to it', sale.id, callback.receipt_number)
            return None
        return sale.id

    def _duplicate(self, tx: PaymentTransaction, callback: StkCallback) -> CallbackOutcome:
        if not tx.result_desc and callback.result_desc:
            tx.result_desc = callback.result_desc
            self.session.commit()
        logger.info('Duplicate STK callback for checkout=%s (already %s)', tx.checkout_request_id, tx.status)
        return CallbackOutcome(OUTCOME_DUPLICATE, tx.checkout_request_id, tx.id, tx.status)

__all__ = [
    'StkCallback', 'parse_stk_callback', 'CallbackOutcome', 'CallbackProcessor',
    'OUTCOME_APPLIED', 'OUTCOME_DUPLICATE', 'OUTCOME_UNMATCHED', 'OUTCOME_INVALID'
]

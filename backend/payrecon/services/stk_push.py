from __future__ import annotations
"""Merchant-initiated STK push: prompt a customer's phone and record a PENDING row.

Also hosts the status query for a push (``query_status``), which resolves rows the
callback never finalized.
"""
import base64
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from sqlalchemy import select, update

from payrecon.errors import GatewayRejectedError, InvalidTransitionError, NotFoundError, ValidationError
from payrecon.models.payment_transaction import PaymentTransaction
from payrecon.models.sale import Sale
from payrecon.services.audit import record_audit
from payrecon.utils.fsm import TX_FSM
from payrecon.utils.masking import mask_phone
from payrecon.utils.validation import parse_amount, require_text

logger = logging.getLogger(__name__)

MIN_AMOUNT = Decimal('1')
MAX_ACCOUNT_REFERENCE = 12
# Safaricom 07xx/01xx subscribers in international form
PHONE_PATTERN = re.compile(r'^254[17]\d{8}$')

# STK query ResultCode -> client status
STATUS_SUCCESS = 'success'
STATUS_CANCELLED = 'cancelled'
STATUS_TIMEOUT = 'timeout'
STATUS_FAILED = 'failed'
STATUS_PENDING = 'pending'
RESULT_CODE_STATUS = {
    '0': STATUS_SUCCESS,
    '1032': STATUS_CANCELLED,
    '1037': STATUS_TIMEOUT,
}
# Daraja answers a query for a push still on the customer's phone with this error code
QUERY_IN_PROGRESS_CODE = '500.001.1001'


def normalize_phone(raw: Any) -> str:
    """Canonicalize 07XX / +2547XX / 2547XX / 7XX... to 2547XXXXXXXX; reject other carriers."""
    if raw is None or not str(raw).strip():
        raise ValidationError('Phone number is required')
    cleaned = re.sub(r'\D', '', str(raw))
    if cleaned.startswith('0'):
        cleaned = '254' + cleaned[1:]
    elif len(cleaned) == 9:
        cleaned = '254' + cleaned
    if not PHONE_PATTERN.match(cleaned):
        raise ValidationError(f'Invalid phone number format: {raw}. Expected format: 254XXXXXXXXX')
    return cleaned


def generate_timestamp(now: datetime) -> str:
    return now.strftime('%Y%m%d%H%M%S')


def generate_password(short_code: str, passkey: str, timestamp: str) -> str:
    """Base64(BusinessShortCode + Passkey + Timestamp)."""
    return base64.b64encode(f'{short_code}{passkey}{timestamp}'.encode('utf-8')).decode('utf-8')


def map_result_code(result_code: Any) -> str:
    if result_code is None or str(result_code).strip() == '':
        return STATUS_PENDING
    return RESULT_CODE_STATUS.get(str(result_code).strip(), STATUS_FAILED)


@dataclass(frozen=True)
class PushResult:
    transaction_id: int
    checkout_request_id: str
    merchant_request_id: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'transactionId': self.transaction_id,
            'checkoutRequestId': self.checkout_request_id,
            'merchantRequestId': self.merchant_request_id,
            'message': self.message,
        }


class STKPushInitiator:
    def __init__(self, session, config, client, tokens, clock):
        self.session = session
        self.config = config
        self.client = client
        self.tokens = tokens
        self.clock = clock

    def _signed_envelope(self) -> Dict[str, Any]:
        timestamp = generate_timestamp(self.clock.now())
        return {
            'BusinessShortCode': self.config.short_code,
            'Password': generate_password(self.config.short_code, self.config.passkey, timestamp),
            'Timestamp': timestamp,
        }

    def _call(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Call the gateway; a rejected token is refreshed and the call retried once."""
        token = self.tokens.get_token()
        try:
            return getattr(self.client, method)(body, token.value)
        except GatewayRejectedError as e:
            if e.details.get('http_status') != 401:
                raise
            logger.warning('M-Pesa rejected cached token on %s; refreshing once', method)
            self.tokens.invalidate()
            return getattr(self.client, method)(body, self.tokens.get_token().value)

    def _check_sale(self, sale_id: int, branch_id: int) -> None:
        sale = self.session.get(Sale, sale_id)
        if sale is None or sale.branch_id != branch_id:
            raise NotFoundError(f'Sale {sale_id} not found')
        if sale.mpesa_verification_status != Sale.VERIFICATION_PENDING:
            raise InvalidTransitionError(
                f'Sale {sale_id} is not awaiting M-Pesa payment ({sale.mpesa_verification_status})',
                current=sale.mpesa_verification_status,
            )

    def initiate(
        self,
        phone: Any,
        amount: Any,
        account_reference: Any,
        description: Optional[str],
        branch_id: int,
        initiated_by: Optional[int],
        sale_id: Optional[int] = None,
    ) -> PushResult:
        amount_value = parse_amount(amount, 'Amount', minimum=MIN_AMOUNT)
        reference = require_text(account_reference, 'Account reference', max_length=MAX_ACCOUNT_REFERENCE)
        msisdn = normalize_phone(phone)
        if sale_id is not None:
            self._check_sale(sale_id, branch_id)
        desc = (description or '').strip() or reference
        body = {
            **self._signed_envelope(),
            'TransactionType': self.config.transaction_type,
            'Amount': int(amount_value.quantize(Decimal('1'), rounding=ROUND_HALF_UP)),
            'PartyA': msisdn,
            'PartyB': self.config.short_code,
            'PhoneNumber': msisdn,
            'CallBackURL': self.config.callback_url,
            'AccountReference': reference,
            'TransactionDesc': desc,
        }
        logger.info('Initiating STK push phone=%s amount=%s reference=%s', mask_phone(msisdn), amount_value, reference)
        data = self._call('stk_push', body)
        if str(data.get('ResponseCode')) != '0':
            logger.error('STK push rejected: %s', data)
            raise GatewayRejectedError(
                data.get('ResponseDescription') or data.get('errorMessage') or 'STK Push failed',
                response_code=data.get('ResponseCode'),
            )
        tx = PaymentTransaction(
            source=PaymentTransaction.SOURCE_STK,
            merchant_request_id=data.get('MerchantRequestID'),
            checkout_request_id=data.get('CheckoutRequestID'),
            phone_number=msisdn,
            amount=amount_value,
            account_reference=reference,
            transaction_desc=desc,
            status=PaymentTransaction.STATUS_PENDING,
            branch_id=branch_id,
            initiated_by=initiated_by,
            sale_id=sale_id,
            created_at=self.clock.now(),
        )
        self.session.add(tx)
        self.session.flush()
        record_audit(
            self.session, initiated_by, 'MPESA.PUSH.INITIATED', 'PaymentTransaction', tx.id,
            None,
            {'status': tx.status, 'checkoutRequestId': tx.checkout_request_id, 'amount': str(amount_value)},
            at=self.clock.now(),
        )
        self.session.commit()
        logger.info('STK push accepted checkout=%s merchant=%s', tx.checkout_request_id, tx.merchant_request_id)
        return PushResult(
            transaction_id=tx.id,
            checkout_request_id=tx.checkout_request_id,
            merchant_request_id=tx.merchant_request_id,
            message=data.get('CustomerMessage') or 'Payment request sent to your phone',
        )

    def query_status(self, checkout_request_id: str, branch_id: Optional[int] = None) -> Dict[str, Any]:
        stmt = select(PaymentTransaction).where(PaymentTransaction.checkout_request_id == checkout_request_id)
        if branch_id is not None:
            stmt = stmt.where(PaymentTransaction.branch_id == branch_id)
        tx = self.session.execute(stmt).scalar_one_or_none()
        if tx is None:
            raise NotFoundError('Transaction not found')
        if tx.is_terminal:
            return _stored_status(tx)

        body = {**self._signed_envelope(), 'CheckoutRequestID': checkout_request_id}
        try:
            data = self._call('stk_query', body)
        except GatewayRejectedError as e:
            if e.response_code == QUERY_IN_PROGRESS_CODE:
                return {'success': False, 'status': STATUS_PENDING, 'resultDesc': e.message}
            raise
        result_code = data.get('ResultCode')
        status = map_result_code(result_code)
        if status != STATUS_PENDING:
            self._resolve(tx, str(result_code), data.get('ResultDesc'))
        payload = {'success': status == STATUS_SUCCESS, 'status': status}
        if result_code is not None:
            payload['resultCode'] = str(result_code)
        if data.get('ResultDesc'):
            payload['resultDesc'] = data.get('ResultDesc')
        return payload

    def _resolve(self, tx: PaymentTransaction, result_code: str, result_desc: Optional[str]):
        """Finalize a PENDING row from a definitive query answer; a concurrent callback wins ties."""
        target = PaymentTransaction.STATUS_COMPLETED if result_code == '0' else PaymentTransaction.STATUS_FAILED
        TX_FSM.assert_can_transition(tx.status, target)
        now = self.clock.now()
        result = self.session.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == tx.id, PaymentTransaction.status == PaymentTransaction.STATUS_PENDING)
            .values(status=target, result_code=result_code, result_desc=result_desc, completed_at=now, updated_at=now)
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount != 1:
            self.session.rollback()
            return
        record_audit(
            self.session, tx.initiated_by, 'MPESA.STATUS.RESOLVED', 'PaymentTransaction', tx.id,
            {'status': PaymentTransaction.STATUS_PENDING},
            {'status': target, 'resultCode': result_code},
            at=now,
        )
        self.session.commit()


def _stored_status(tx: PaymentTransaction) -> Dict[str, Any]:
    if tx.status == PaymentTransaction.STATUS_COMPLETED:
        status = STATUS_SUCCESS
    else:
        status = map_result_code(tx.result_code) if tx.result_code not in (None, '0') else STATUS_FAILED
    payload = {
        'success': tx.status == PaymentTransaction.STATUS_COMPLETED,
        'status': status,
        'data': {
            'transactionId': tx.id,
            'amount': str(tx.amount),
            'phoneNumber': mask_phone(tx.phone_number),
            'mpesaReceiptNumber': tx.mpesa_receipt_number,
            'completedAt': tx.completed_at.isoformat() if tx.completed_at else None,
        },
    }
    if tx.result_code is not None:
        payload['resultCode'] = tx.result_code
    if tx.result_desc:
        payload['resultDesc'] = tx.result_desc
    return payload

__all__ = [
    'normalize_phone', 'generate_timestamp', 'generate_password', 'map_result_code',
    'PushResult', 'STKPushInitiator', 'MIN_AMOUNT', 'MAX_ACCOUNT_REFERENCE'
]

from __future__ import annotations
from flask import Blueprint, request, abort
from payrecon.decorators.auth import require_permissions
from payrecon.decorators.gateway import gateway_ack
from payrecon.services.policy import acting_branch_id, current_user_id, has_permissions
from payrecon.services.poll import find_recent_till_payment
from payrecon.constants.permissions import PAY_READ, PAY_PUSH, PAY_VERIFY, PAY_ADMIN
from payrecon.engine import get_engine
from payrecon.errors import PaymentError
from payrecon.models.sale import Sale
from payrecon.utils.listing import iso_z
from payrecon.utils.masking import mask_phone
from payrecon.utils.validation import parse_amount
from payrecon import get_db
import logging

logger = logging.getLogger(__name__)

payments_bp = Blueprint('payments', __name__)


@payments_bp.post('/push')
@require_permissions(PAY_PUSH)
def initiate_push():
    data = request.get_json(silent=True) or {}
    branch_id = acting_branch_id()
    sale_id = data.get('saleId')
    if sale_id is not None:
        try:
            sale_id = int(sale_id)
        except (TypeError, ValueError):
            abort(400, description='saleId must be int')
    result = get_engine().push_initiator(get_db()).initiate(
        phone=data.get('phoneNumber', data.get('phone')),
        amount=data.get('amount'),
        account_reference=data.get('accountReference'),
        description=data.get('description'),
        branch_id=branch_id,
        initiated_by=current_user_id(),
        sale_id=sale_id,
    )
    return result.to_dict(), 200


@payments_bp.get('/push/<checkout_request_id>/status')
@require_permissions(PAY_READ)
def push_status(checkout_request_id: str):
    return get_engine().push_initiator(get_db()).query_status(checkout_request_id, branch_id=acting_branch_id())


@payments_bp.post('/callback')
@gateway_ack('stk-callback')
def stk_callback(payload):
    outcome = get_engine().callback_processor(get_db()).process(payload)
    logger.info('STK callback %s checkout=%s', outcome.outcome, outcome.checkout_request_id)


@payments_bp.post('/c2b/validate')
@gateway_ack('c2b-validate')
def c2b_validate(payload):
    verdict = get_engine().c2b_ingestor(get_db()).validate(payload)
    logger.info('C2B validation TransID=%s accepted=%s reason=%s', payload.get('TransID') if isinstance(payload, dict) else None, verdict.accepted, verdict.reason)


@payments_bp.post('/c2b/confirm')
@gateway_ack('c2b-confirm')
def c2b_confirm(payload):
    outcome = get_engine().c2b_ingestor(get_db()).confirm(payload)
    logger.info('C2B confirmation %s receipt=%s', outcome.outcome, outcome.receipt_number)


@payments_bp.get('/poll')
@require_permissions(PAY_READ)
def poll_till():
    amount = request.args.get('amount')
    if amount not in (None, ''):
        amount = parse_amount(amount, 'amount')
    else:
        amount = None
    tx = find_recent_till_payment(
        get_db(), get_engine().clock, acting_branch_id(),
        amount=amount, reference=request.args.get('reference'),
    )
    if tx is None:
        return {'found': False}
    return {
        'found': True,
        'receiptNumber': tx.mpesa_receipt_number,
        'amount': str(tx.amount),
        'phoneNumber': mask_phone(tx.phone_number),
        'timestamp': iso_z(tx.completed_at or tx.created_at),
    }


@payments_bp.post('/verify-receipt')
@require_permissions(PAY_READ)
def verify_receipt():
    data = request.get_json(silent=True) or {}
    branch_id = acting_branch_id()
    try:
        evidence = get_engine().manual_verifier(get_db()).verify_receipt(
            data.get('receiptCode'), data.get('expectedAmount'), branch_id
        )
    except PaymentError as e:
        return {'success': False, 'error': e.message, 'code': e.code}, e.status
    return {
        'success': True,
        'receiptNumber': evidence.receipt_number,
        'amount': str(evidence.amount),
        'phoneNumber': mask_phone(evidence.phone_number),
    }


@payments_bp.post('/sales/<int:sale_id>/verify')
@require_permissions(PAY_VERIFY)
def confirm_sale(sale_id: int):
    data = request.get_json(silent=True) or {}
    method = data.get('method') or Sale.METHOD_MANUAL_MANAGER
    if method == Sale.METHOD_MANUAL_ADMIN and not has_permissions(PAY_ADMIN):
        abort(403, description='Missing permission')
    sale = get_engine().manual_verifier(get_db()).confirm_manual(
        sale_id, data.get('receiptCode'), method, current_user_id(), acting_branch_id()
    )
    return {'id': sale.id, 'verification': sale.verification_snapshot()}

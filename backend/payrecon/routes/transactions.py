from __future__ import annotations
from datetime import datetime, timezone
from flask import Blueprint, request
from sqlalchemy import select
from payrecon.decorators.auth import require_permissions
from payrecon.constants.permissions import PAY_READ
from payrecon.errors import NotFoundError, ValidationError
from payrecon.models.payment_transaction import PaymentTransaction
from payrecon.services.policy import acting_branch_id
from payrecon.services.stats import transaction_stats
from payrecon.utils.filters import apply_filters
from payrecon.utils.listing import paginate, make_cached_list_response, handle_conditional, iso_z
from payrecon.utils.masking import mask_phone
from payrecon.utils.sorting import apply_multi_sort
from payrecon import get_db

transactions_bp = Blueprint('transactions', __name__)


def _parse_date(raw: str) -> datetime:
    """ISO-8601 date or datetime -> naive UTC."""
    dt = datetime.fromisoformat(raw.replace('Z', '+00:00'))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


FILTER_SPECS = {
    'status': {
        'validate': lambda v: v in PaymentTransaction.ALL_STATUSES,
        'op': lambda q, v: q.where(PaymentTransaction.status == v),
    },
    'source': {
        'validate': lambda v: v in (PaymentTransaction.SOURCE_STK, PaymentTransaction.SOURCE_C2B),
        'op': lambda q, v: q.where(PaymentTransaction.source == v),
    },
    'start_date': {
        'coerce': _parse_date,
        'op': lambda q, v: q.where(PaymentTransaction.created_at >= v),
    },
    'end_date': {
        'coerce': _parse_date,
        'op': lambda q, v: q.where(PaymentTransaction.created_at <= v),
    },
}

SORTABLE = {
    'created_at': PaymentTransaction.created_at,
    'amount': PaymentTransaction.amount,
    'status': PaymentTransaction.status,
    'id': PaymentTransaction.id,
}


def _tx_json(tx: PaymentTransaction):
    return {
        'id': tx.id,
        'source': tx.source,
        'checkoutRequestId': tx.checkout_request_id,
        'merchantRequestId': tx.merchant_request_id,
        'phoneNumber': mask_phone(tx.phone_number),
        'amount': str(tx.amount),
        'accountReference': tx.account_reference,
        'status': tx.status,
        'resultCode': tx.result_code,
        'resultDesc': tx.result_desc,
        'mpesaReceiptNumber': tx.mpesa_receipt_number,
        'saleId': tx.sale_id,
        'branchId': tx.branch_id,
        'createdAt': iso_z(tx.created_at),
        'completedAt': iso_z(tx.completed_at),
    }


@transactions_bp.get('/transactions')
@require_permissions(PAY_READ)
def list_transactions():
    session = get_db()
    stmt = select(PaymentTransaction).where(PaymentTransaction.branch_id == acting_branch_id())
    stmt = apply_filters(stmt, FILTER_SPECS, request.args)
    stmt = apply_multi_sort(stmt, request.args.get('sort'), SORTABLE, PaymentTransaction.id.desc())
    rows, total, limit, offset = paginate(session, stmt)
    latest_ts = max((r.updated_at for r in rows), default=None)
    resp, etag = make_cached_list_response([_tx_json(r) for r in rows], total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return cond
    return resp


@transactions_bp.get('/transactions/<int:tx_id>')
@require_permissions(PAY_READ)
def get_transaction(tx_id: int):
    session = get_db()
    tx = session.execute(
        select(PaymentTransaction).where(
            PaymentTransaction.id == tx_id,
            PaymentTransaction.branch_id == acting_branch_id(),
        )
    ).scalar_one_or_none()
    if tx is None:
        raise NotFoundError('Transaction not found')
    return _tx_json(tx)


@transactions_bp.get('/stats')
@require_permissions(PAY_READ)
def stats():
    start = end = None
    try:
        if request.args.get('start_date'):
            start = _parse_date(request.args['start_date'])
        if request.args.get('end_date'):
            end = _parse_date(request.args['end_date'])
    except ValueError:
        raise ValidationError('start_date/end_date must be ISO-8601 dates')
    return transaction_stats(get_db(), acting_branch_id(), start, end)

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func, select

from payrecon.models.payment_transaction import PaymentTransaction


def transaction_stats(session, branch_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
    """Per-status counts, completed revenue and success rate for one branch."""
    conditions = [PaymentTransaction.branch_id == branch_id]
    if start is not None:
        conditions.append(PaymentTransaction.created_at >= start)
    if end is not None:
        conditions.append(PaymentTransaction.created_at <= end)
    rows = session.execute(
        select(PaymentTransaction.status, func.count(PaymentTransaction.id), func.sum(PaymentTransaction.amount))
        .where(*conditions)
        .group_by(PaymentTransaction.status)
    ).all()
    counts = {status: 0 for status in PaymentTransaction.ALL_STATUSES}
    revenue = Decimal('0.00')
    for status, count, total in rows:
        counts[status] = count
        if status == PaymentTransaction.STATUS_COMPLETED and total is not None:
            revenue = Decimal(str(total)).quantize(Decimal('0.01'))
    total_count = sum(counts.values())
    completed = counts[PaymentTransaction.STATUS_COMPLETED]
    return {
        'totalTransactions': total_count,
        'completedTransactions': completed,
        'failedTransactions': counts[PaymentTransaction.STATUS_FAILED],
        'pendingTransactions': counts[PaymentTransaction.STATUS_PENDING],
        'totalRevenue': str(revenue),
        'successRate': f'{(completed / total_count) * 100:.2f}' if total_count else '0.00',
    }

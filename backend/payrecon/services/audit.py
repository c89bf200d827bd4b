from __future__ import annotations
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from payrecon.models.audit import AuditLog
from payrecon.utils.clock import utcnow

logger = logging.getLogger(__name__)


def record_audit(
    session,
    actor_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Any,
    old_value: Any = None,
    new_value: Any = None,
    at=None,
) -> Optional[AuditLog]:
    """Append one audit entry inside the caller's transaction.

    The insert runs in a SAVEPOINT: if it fails only the audit row is rolled back and
    the failure is logged at ERROR, so the caller's state change can still commit.
    Commit is left to the caller.

    Action codes: MPESA.PUSH.INITIATED, MPESA.CALLBACK.COMPLETED, MPESA.C2B.RECEIVED,
    MPESA_AUTO_VERIFIED, MPESA_MANUAL_VERIFIED, ...
    """
    try:
        with session.begin_nested():
            entry = AuditLog(
                user_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id),
                old_value=old_value,
                new_value=new_value,
                created_at=at or utcnow(),
            )
            session.add(entry)
    except SQLAlchemyError:
        logger.error(
            'Audit write failed action=%s entity=%s:%s old=%r new=%r',
            action, entity_type, entity_id, old_value, new_value,
            exc_info=True,
        )
        return None
    return entry

from __future__ import annotations
"""Acknowledge-always wrapper for endpoints the payment gateway calls.

The gateway retries any delivery that is not answered with a fast success, and retries
pile up. Handlers wrapped with ``gateway_ack`` therefore always answer HTTP 200 with the
fixed envelope ``{"ResultCode": 0, "ResultDesc": "Accepted"}``; whatever went wrong is
logged with the (phone-masked) payload for manual reconciliation and the session is
rolled back.

Usage:

@payments_bp.post('/callback')
@gateway_ack('stk-callback')
def stk_callback(payload):
    ...
"""
import logging
from functools import wraps

from flask import request, jsonify
from sqlalchemy.exc import SQLAlchemyError

from payrecon import get_db
from payrecon.utils.masking import redact_payload

logger = logging.getLogger(__name__)

GATEWAY_ACK = {'ResultCode': 0, 'ResultDesc': 'Accepted'}


def gateway_ack(event: str):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            payload = request.get_json(silent=True, force=True)
            try:
                fn(payload, *args, **kwargs)
            except Exception:
                logger.exception('%s handler failed; acknowledged anyway. payload=%s', event, redact_payload(payload))
                try:
                    get_db().rollback()
                except SQLAlchemyError:
                    logger.exception('%s rollback failed', event)
            return jsonify(GATEWAY_ACK), 200
        return wrapper
    return outer

__all__ = ['gateway_ack', 'GATEWAY_ACK']

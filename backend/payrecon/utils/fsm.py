from __future__ import annotations
"""Finite state machine helper for the engine's two lifecycles.

    TX_FSM.assert_can_transition(tx.status, PaymentTransaction.STATUS_COMPLETED)

Raises InvalidTransitionError (409) if the move is not in the graph.
"""
from typing import Dict, Set

from payrecon.errors import InvalidTransitionError
from payrecon.models.payment_transaction import PaymentTransaction
from payrecon.models.sale import Sale


class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            raise InvalidTransitionError(
                f"Invalid {self.field_name} transition {current} -> {target}",
                current=current,
                target=target,
            )
        return True


TX_FSM = TransitionValidator({
    PaymentTransaction.STATUS_PENDING: {PaymentTransaction.STATUS_COMPLETED, PaymentTransaction.STATUS_FAILED},
    PaymentTransaction.STATUS_COMPLETED: set(),
    PaymentTransaction.STATUS_FAILED: set(),
})

SALE_VERIFICATION_FSM = TransitionValidator({
    Sale.VERIFICATION_NOT_APPLICABLE: set(),
    Sale.VERIFICATION_PENDING: {Sale.VERIFICATION_VERIFIED, Sale.VERIFICATION_FAILED},
    Sale.VERIFICATION_VERIFIED: set(),
    Sale.VERIFICATION_FAILED: set(),
}, field_name='mpesa_verification_status')

__all__ = ['TransitionValidator', 'TX_FSM', 'SALE_VERIFICATION_FSM']

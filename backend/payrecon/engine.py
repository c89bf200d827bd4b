from __future__ import annotations
"""Per-app wiring of the reconciliation engine's collaborators.

``create_app`` stores one Engine in ``app.extensions['payrecon']``. Services are built
per request around the request's DB session; the token cache lives on the Engine so it
is shared by every request in the process.
"""
from typing import List, Optional

from flask import current_app

from payrecon.config.gateway import GatewayConfig
from payrecon.services.c2b import AcceptanceRule, C2BIngestor
from payrecon.services.callback import CallbackProcessor
from payrecon.services.gateway import DarajaClient
from payrecon.services.manual_verify import ManualVerifier
from payrecon.services.stk_push import STKPushInitiator
from payrecon.services.token import TokenManager
from payrecon.utils.clock import SystemClock

EXTENSION_KEY = 'payrecon'


class Engine:
    def __init__(self, config: GatewayConfig, client=None, clock=None, c2b_rules: Optional[List[AcceptanceRule]] = None):
        self.config = config
        self.client = client or DarajaClient(config)
        self.clock = clock or SystemClock()
        self.tokens = TokenManager(self.client, self.clock)
        self.c2b_rules = list(c2b_rules or [])

    def push_initiator(self, session) -> STKPushInitiator:
        return STKPushInitiator(session, self.config, self.client, self.tokens, self.clock)

    def callback_processor(self, session) -> CallbackProcessor:
        return CallbackProcessor(session, self.clock)

    def c2b_ingestor(self, session) -> C2BIngestor:
        return C2BIngestor(session, self.clock, self.c2b_rules)

    def manual_verifier(self, session) -> ManualVerifier:
        return ManualVerifier(session, self.clock)


def get_engine() -> Engine:
    return current_app.extensions[EXTENSION_KEY]

__all__ = ['Engine', 'get_engine', 'EXTENSION_KEY']

from __future__ import annotations
"""Process-wide bearer credential for the gateway, refreshed lazily.

Two requests racing on an expired token may both refresh; that costs one extra
round trip and is accepted instead of serializing callers.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from payrecon.errors import AuthenticationError

logger = logging.getLogger(__name__)

# Daraja tokens live 3599 s; expire ours a minute early.
DEFAULT_EXPIRES_IN = 3599
DEFAULT_SAFETY_MARGIN = timedelta(seconds=60)


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class TokenManager:
    def __init__(self, client, clock, safety_margin: timedelta = DEFAULT_SAFETY_MARGIN):
        self.client = client
        self.clock = clock
        self.safety_margin = safety_margin
        self._token: Optional[AccessToken] = None

    def get_token(self) -> AccessToken:
        now = self.clock.now()
        cached = self._token
        if cached is not None and cached.is_valid(now):
            return cached
        logger.info('Refreshing M-Pesa access token')
        data = self.client.fetch_token()
        try:
            expires_in = int(data.get('expires_in') or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            raise AuthenticationError('M-Pesa authentication failed: invalid expires_in')
        lifetime = max(timedelta(seconds=expires_in) - self.safety_margin, timedelta(0))
        token = AccessToken(value=data['access_token'], expires_at=now + lifetime)
        self._token = token
        return token

    def invalidate(self):
        self._token = None

__all__ = ['AccessToken', 'TokenManager']

from __future__ import annotations
"""Thin HTTP client for the Safaricom Daraja API.

Every call is bounded by ``GatewayConfig.timeout_seconds`` (30 s by default) and
never retried here; retry policy belongs to the caller. Transport failures are
translated into the engine's typed errors:

  requests.Timeout / ConnectionError  -> NetworkTimeoutError
  OAuth endpoint refusal               -> AuthenticationError
  non-2xx or non-JSON business answer  -> GatewayRejectedError
"""
import logging
from typing import Any, Dict, Optional

import requests

from payrecon.config.gateway import GatewayConfig
from payrecon.errors import AuthenticationError, GatewayRejectedError, NetworkTimeoutError

logger = logging.getLogger(__name__)

EP_AUTH = '/oauth/v1/generate'
EP_STK_PUSH = '/mpesa/stkpush/v1/processrequest'
EP_STK_QUERY = '/mpesa/stkpushquery/v1/query'
EP_C2B_REGISTER = '/mpesa/c2b/v1/registerurl'
EP_C2B_SIMULATE = '/mpesa/c2b/v1/simulate'


class DarajaClient:
    def __init__(self, config: GatewayConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.base_url = config.base_url
        self.timeout = config.timeout_seconds
        self._http = session or requests.Session()

    def fetch_token(self) -> Dict[str, Any]:
        """Client-credentials grant. Returns the raw ``{access_token, expires_in}`` body."""
        url = f"{self.base_url}{EP_AUTH}"
        try:
            resp = self._http.get(
                url,
                params={'grant_type': 'client_credentials'},
                auth=(self.config.consumer_key, self.config.consumer_secret),
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise NetworkTimeoutError(f'M-Pesa authentication timed out after {self.timeout:g}s') from e
        except requests.ConnectionError as e:
            raise NetworkTimeoutError('M-Pesa authentication endpoint unreachable') from e
        data = _json_or_none(resp)
        if resp.status_code >= 400 or not data or not data.get('access_token'):
            description = (data or {}).get('error_description') or (data or {}).get('errorMessage') or resp.reason
            raise AuthenticationError(f'M-Pesa authentication failed: {description}', http_status=resp.status_code)
        return data

    def post(self, path: str, body: Dict[str, Any], token: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self._http.post(
                url,
                json=body,
                headers={'Authorization': f'Bearer {token}', 'Content-Type': 'application/json'},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise NetworkTimeoutError(f'M-Pesa request to {path} timed out after {self.timeout:g}s') from e
        except requests.ConnectionError as e:
            raise NetworkTimeoutError(f'M-Pesa endpoint {path} unreachable') from e
        data = _json_or_none(resp)
        if data is None:
            raise GatewayRejectedError(
                f'M-Pesa returned a non-JSON response ({resp.status_code})', http_status=resp.status_code
            )
        if resp.status_code >= 400:
            message = data.get('errorMessage') or data.get('ResponseDescription') or data.get('ResultDesc') or resp.reason
            raise GatewayRejectedError(
                str(message),
                response_code=data.get('errorCode') or data.get('ResponseCode'),
                http_status=resp.status_code,
            )
        return data

    def stk_push(self, body: Dict[str, Any], token: str) -> Dict[str, Any]:
        return self.post(EP_STK_PUSH, body, token)

    def stk_query(self, body: Dict[str, Any], token: str) -> Dict[str, Any]:
        return self.post(EP_STK_QUERY, body, token)

    def register_c2b_urls(self, body: Dict[str, Any], token: str) -> Dict[str, Any]:
        return self.post(EP_C2B_REGISTER, body, token)

    def simulate_c2b(self, body: Dict[str, Any], token: str) -> Dict[str, Any]:
        return self.post(EP_C2B_SIMULATE, body, token)


def _json_or_none(resp) -> Optional[Dict[str, Any]]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None

__all__ = ['DarajaClient', 'EP_AUTH', 'EP_STK_PUSH', 'EP_STK_QUERY', 'EP_C2B_REGISTER', 'EP_C2B_SIMULATE']

from __future__ import annotations
"""Gateway (M-Pesa Daraja) configuration.

All credentials are required at startup. ``load_gateway_config`` is called from
``create_app`` so a misconfigured deployment fails to boot instead of failing on
the first payment.
"""
from dataclasses import dataclass
from typing import Any, Mapping

from payrecon.errors import ConfigurationError

BASE_URLS = {
    'sandbox': 'https://sandbox.safaricom.co.ke',
    'production': 'https://api.safaricom.co.ke',
}

REQUIRED_KEYS = (
    'MPESA_ENVIRONMENT',
    'MPESA_CONSUMER_KEY',
    'MPESA_CONSUMER_SECRET',
    'MPESA_BUSINESS_SHORT_CODE',
    'MPESA_PASSKEY',
    'MPESA_CALLBACK_URL',
)

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class GatewayConfig:
    environment: str
    consumer_key: str
    consumer_secret: str
    short_code: str
    passkey: str
    callback_url: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    transaction_type: str = 'CustomerPayBillOnline'
    c2b_response_type: str = 'Completed'

    @property
    def base_url(self) -> str:
        return BASE_URLS[self.environment]

    @property
    def is_sandbox(self) -> bool:
        return self.environment == 'sandbox'


def load_gateway_config(source: Mapping[str, Any]) -> GatewayConfig:
    """Build a GatewayConfig from a mapping (app.config or os.environ)."""
    missing = [k for k in REQUIRED_KEYS if not str(source.get(k) or '').strip()]
    if missing:
        raise ConfigurationError(f"Missing M-Pesa configuration: {', '.join(missing)}", missing=missing)
    environment = str(source['MPESA_ENVIRONMENT']).strip().lower()
    if environment not in BASE_URLS:
        raise ConfigurationError(
            f"MPESA_ENVIRONMENT must be 'sandbox' or 'production', got '{environment}'"
        )
    try:
        timeout = float(source.get('MPESA_TIMEOUT_SECONDS') or DEFAULT_TIMEOUT_SECONDS)
    except (TypeError, ValueError):
        raise ConfigurationError('MPESA_TIMEOUT_SECONDS must be a number')
    return GatewayConfig(
        environment=environment,
        consumer_key=str(source['MPESA_CONSUMER_KEY']).strip(),
        consumer_secret=str(source['MPESA_CONSUMER_SECRET']).strip(),
        short_code=str(source['MPESA_BUSINESS_SHORT_CODE']).strip(),
        passkey=str(source['MPESA_PASSKEY']).strip(),
        callback_url=str(source['MPESA_CALLBACK_URL']).strip(),
        timeout_seconds=timeout,
        transaction_type=str(source.get('MPESA_TRANSACTION_TYPE') or 'CustomerPayBillOnline'),
        c2b_response_type=str(source.get('MPESA_C2B_RESPONSE_TYPE') or 'Completed'),
    )

__all__ = ['GatewayConfig', 'load_gateway_config', 'BASE_URLS', 'REQUIRED_KEYS']

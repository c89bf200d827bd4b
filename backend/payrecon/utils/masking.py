from __future__ import annotations
"""Phone number masking for logs and outward-facing reads."""
from typing import Any

PHONE_KEYS = {'MSISDN', 'PhoneNumber', 'PartyA', 'phone', 'phoneNumber', 'phone_number'}


def mask_phone(phone: Any) -> str:
    """254712345678 -> 2547****5678. Short or empty values are fully masked."""
    if phone is None:
        return ''
    s = str(phone)
    if len(s) < 8:
        return '*' * len(s)
    return f"{s[:4]}{'*' * (len(s) - 8)}{s[-4:]}"


def redact_payload(payload: Any) -> Any:
    """Return a copy of a gateway payload with phone-bearing fields masked (for logging)."""
    if isinstance(payload, dict):
        out = {}
        for k, v in payload.items():
            if k in PHONE_KEYS and not isinstance(v, (dict, list)):
                out[k] = mask_phone(v)
            elif k == 'Item' and isinstance(v, list):
                out[k] = [
                    {**item, 'Value': mask_phone(item.get('Value'))}
                    if isinstance(item, dict) and item.get('Name') == 'PhoneNumber' else redact_payload(item)
                    for item in v
                ]
            else:
                out[k] = redact_payload(v)
        return out
    if isinstance(payload, list):
        return [redact_payload(v) for v in payload]
    return payload

__all__ = ['mask_phone', 'redact_payload']

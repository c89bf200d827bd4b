"""Permission codes for the payments service.
Codes arrive in the JWT ``perms`` claim issued by the POS identity service; never rename silently.
"""
from __future__ import annotations
from typing import Dict, List

SERVICE = 'PAY'

ACTIONS = ['READ', 'PUSH', 'VERIFY', 'ADMIN']

PAY_READ = 'PAY.READ'
PAY_PUSH = 'PAY.PUSH'
PAY_VERIFY = 'PAY.VERIFY'
# Admin override for manual verification (MANUAL_ADMIN)
PAY_ADMIN = 'PAY.ADMIN'


def build_all_permission_codes() -> List[str]:
    return [f"{SERVICE}.{act}" for act in ACTIONS]

ALL_PERMISSION_CODES = build_all_permission_codes()

ROLE_PRESETS: Dict[str, List[str]] = {
    'Cashier': [PAY_READ, PAY_PUSH],
    'Manager': [PAY_READ, PAY_PUSH, PAY_VERIFY],
    'Admin': ['*'],
}


def expand_role(role_name: str) -> List[str]:
    codes = ROLE_PRESETS.get(role_name, [])
    if '*' in codes:
        return list(ALL_PERMISSION_CODES)
    return list(codes)

from __future__ import annotations
from typing import Optional, Set
from flask import abort
from flask_jwt_extended import get_jwt, get_jwt_identity


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def current_user_id() -> Optional[int]:
    ident = get_jwt_identity()
    try:
        return int(ident) if ident is not None else None
    except (TypeError, ValueError):
        return None


def acting_branch_id() -> int:
    """Branch the caller is operating in: the first of the ``branch_ids`` claim."""
    branch_ids = get_jwt().get('branch_ids') or []
    if not branch_ids:
        abort(403, description='No branch assigned')
    return int(branch_ids[0])

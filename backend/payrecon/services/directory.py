from __future__ import annotations
"""Lookups of POS-owned reference rows the engine needs (branch, system actor)."""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from payrecon.models.core import Branch, User

logger = logging.getLogger(__name__)


def resolve_default_branch(session) -> Optional[Branch]:
    """First active branch; unsolicited till payments are booked against it."""
    return session.execute(
        select(Branch).where(Branch.is_active.is_(True)).order_by(Branch.id.asc()).limit(1)
    ).scalar_one_or_none()


def ensure_system_user(session, branch_id: Optional[int] = None) -> User:
    """Return the system actor, creating it on first use."""
    user = session.execute(select(User).where(User.is_system.is_(True)).order_by(User.id.asc()).limit(1)).scalar_one_or_none()
    if user:
        return user
    user = User(name='M-Pesa System', email=User.SYSTEM_EMAIL, branch_id=branch_id, is_system=True)
    try:
        with session.begin_nested():
            session.add(user)
    except IntegrityError:
        # created concurrently by another handler
        user = session.execute(select(User).where(User.email == User.SYSTEM_EMAIL)).scalar_one()
    else:
        logger.info('Created system actor user id=%s', user.id)
    return user

__all__ = ['resolve_default_branch', 'ensure_system_user']

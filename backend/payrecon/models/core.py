from __future__ import annotations
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, DateTime

from payrecon.utils.clock import utcnow

Base = declarative_base()


class Branch(Base):
    """Store location. Owned by the POS subsystem; the engine only reads it."""
    __tablename__ = 'branches'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class User(Base):
    """Staff account projection. ``is_system`` marks the actor used for unsolicited till payments."""
    __tablename__ = 'users'
    SYSTEM_EMAIL = 'system@payrecon.local'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    branch_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

__all__ = ['Base', 'Branch', 'User']

# binary-roi-engine/models/base.py
"""
Base model, mixins and column helpers for all database tables.
"""
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, DateTime, DECIMAL
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Money is stored with 8 decimal places, rates with 12.
MONEY_PLACES = 8
RATE_PLACES = 12
ZERO = Decimal("0")


def _get_current_time():
    """Naive UTC timestamp (same value on SQLite and PostgreSQL columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


utcnow = _get_current_time


def MoneyColumn(**kwargs):
    """DECIMAL(20, 8) currency column, defaulting to zero."""
    kwargs.setdefault("nullable", False)
    kwargs.setdefault("default", ZERO)
    return Column(DECIMAL(20, MONEY_PLACES), **kwargs)


class AuditMixin:
    createdAt = Column(DateTime, default=_get_current_time)
    updatedAt = Column(DateTime, default=_get_current_time, onupdate=_get_current_time)

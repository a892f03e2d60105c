"""
GED Database Base — SQLAlchemy declarative base and mixins.

Provides:
- Base: declarative base for all GED tables
- AuditMixin: created_at, updated_at, created_by, updated_by
- SequencedCodeMixin: code + (prefix, year, seq) columns backing unique codes
- live_filter(): the single "not soft-deleted" predicate per entity
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all GED models."""
    pass


class AuditMixin:
    """Adds created_at, updated_at, created_by, updated_by columns."""
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)


class SequencedCodeMixin:
    """
    Code columns for year-scoped sequential identifiers (PREFIX-YEAR-SEQ).

    code_prefix/code_year/code_seq are NULL for codes that are not
    sequence-based (timestamp fallback). Each table declares the unique
    constraints over (code) and (code_prefix, code_year, code_seq).
    """
    code = Column(String(50), nullable=False)
    code_prefix = Column(String(20), nullable=True)
    code_year = Column(Integer, nullable=True)
    code_seq = Column(Integer, nullable=True)


def live_filter(model: Any) -> Any:
    """
    Return the "not soft-deleted" predicate for a model.

    Models declare it through a ``__live__`` classmethod so every query uses
    the same rule.
    """
    return model.__live__()

"""SQLAlchemy models for the shared counter store."""

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Float, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class KeyValue(Base):
    """Scalar entry: counters, checkpoint, locks.

    A row whose expires_at (UNIX seconds) is in the past is treated as absent.
    """

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class HashEntry(Base):
    """Field of a named hash (e.g. tx hash -> serialized record)."""

    __tablename__ = "hash_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    field: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class SortedSetEntry(Base):
    """Member of a named sorted set, ordered by score."""

    __tablename__ = "sorted_set_entries"
    __table_args__ = (Index("ix_sorted_set_key_score", "key", "score"),)

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    member: Mapped[str] = mapped_column(String(255), primary_key=True)
    score: Mapped[int] = mapped_column(BigInteger, nullable=False)

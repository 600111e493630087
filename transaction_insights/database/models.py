"""
Database Models

Backing-store tables for the pipeline:

- RawTransactionRecord: transactions exactly as ingested (write-once)
- CleanTransactionRecord: the materialized clean set, rebuilt in full
- CleanRebuildRecord: audit row per rebuild; holds the surrogate-id watermark
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY
SurrogateKey = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class RawTransactionRecord(Base):
    """
    Raw transaction as received.

    row_id keeps ingestion order; event_time is stored as a UTC instant.
    """
    __tablename__ = "raw_transactions"

    row_id: Mapped[int] = mapped_column(SurrogateKey, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    event_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    order_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category_code: Mapped[Optional[str]] = mapped_column(String(255))
    brand: Mapped[Optional[str]] = mapped_column(String(255))
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)


class CleanTransactionRecord(Base):
    """
    Clean transaction with surrogate id and normalized timestamp.

    event_time is the source system clock reading; normalized_event_time is
    true UTC. Both are stored without offset.
    """
    __tablename__ = "clean_transactions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    event_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    normalized_event_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    order_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category_code: Mapped[Optional[str]] = mapped_column(String(255))
    brand: Mapped[Optional[str]] = mapped_column(String(255))
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        Index("ix_clean_transactions_normalized_event_time", "normalized_event_time"),
        Index("ix_clean_transactions_category_code", "category_code"),
        Index("ix_clean_transactions_brand", "brand"),
        Index("ix_clean_transactions_user_id", "user_id"),
    )


class CleanRebuildRecord(Base):
    """One row per clean-set rebuild"""
    __tablename__ = "clean_rebuilds"

    rebuild_id: Mapped[int] = mapped_column(SurrogateKey, primary_key=True, autoincrement=True)
    rebuilt_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    row_count: Mapped[int] = mapped_column(BigInteger, nullable=False)
    first_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    last_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    next_id: Mapped[int] = mapped_column(BigInteger, nullable=False)  # never handed out again

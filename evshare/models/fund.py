from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Integer, String, Numeric, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from evshare.core.db import Base


class Fund(Base):
    """Shared per-vehicle balance. Debits lock this row."""
    __tablename__ = "funds"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        index=True
    )

    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0"),
        nullable=False
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    __mapper_args__ = {"version_id_col": version}


class FundUsage(Base):
    """Money leaving a fund, e.g. an executed upgrade."""
    __tablename__ = "fund_usage"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        index=True
    )

    fund_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("funds.id"),
        index=True
    )

    usage_type: Mapped[str] = mapped_column(
        String(30)
    )  # maintenance, insurance, fuel, parking, other

    amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2)
    )

    description: Mapped[str | None] = mapped_column(
        String,
        nullable=True
    )

    image_url: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True
    )

    # id of the record that caused the debit (upgrade proposal id)
    reference_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True
    )


class FundAddition(Base):
    """Money entering a fund from a co-owner deposit."""
    __tablename__ = "fund_additions"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        index=True
    )

    fund_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("funds.id"),
        index=True
    )

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        index=True
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2)
    )

    note: Mapped[str | None] = mapped_column(
        String,
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )

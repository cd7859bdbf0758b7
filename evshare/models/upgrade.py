from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Integer, String, Text, Numeric, Boolean, Date, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from evshare.core.db import Base


class UpgradeType(str, Enum):
    BATTERY_UPGRADE = "BatteryUpgrade"
    INSURANCE_PACKAGE = "InsurancePackage"
    TECHNOLOGY_UPGRADE = "TechnologyUpgrade"
    INTERIOR_UPGRADE = "InteriorUpgrade"
    PERFORMANCE_UPGRADE = "PerformanceUpgrade"
    SAFETY_UPGRADE = "SafetyUpgrade"
    OTHER = "Other"


class ProposalStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    EXECUTED = "Executed"


TERMINAL_STATUSES = {
    ProposalStatus.REJECTED.value,
    ProposalStatus.CANCELLED.value,
    ProposalStatus.EXECUTED.value,
}


class UpgradeProposal(Base):
    __tablename__ = "upgrade_proposals"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        index=True
    )

    vehicle_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("vehicles.id"),
        index=True
    )

    proposer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        index=True
    )

    upgrade_type: Mapped[str] = mapped_column(
        String(30)
    )

    title: Mapped[str] = mapped_column(
        String(200)
    )

    description: Mapped[str] = mapped_column(
        Text,
        default=""
    )

    justification: Mapped[str | None] = mapped_column(
        Text,
        nullable=True
    )

    estimated_cost: Mapped[Decimal] = mapped_column(
        Numeric(15, 2)
    )

    # Optional vendor / planning metadata
    vendor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    vendor_contact: Mapped[str | None] = mapped_column(String(200), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    proposed_installation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    estimated_duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ProposalStatus.PENDING.value,
        index=True
    )

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Execution tracking, populated only on Executed
    actual_cost: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    execution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    invoice_image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    fund_usage_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("fund_usage.id"),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True)
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False
    )

    __mapper_args__ = {"version_id_col": version}


class UpgradeVote(Base):
    """One vote per (proposal, voter); the composite key enforces it."""
    __tablename__ = "upgrade_votes"

    proposal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("upgrade_proposals.id"),
        primary_key=True
    )

    voter_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        primary_key=True,
        index=True
    )

    is_approve: Mapped[bool] = mapped_column(
        Boolean
    )

    comments: Mapped[str | None] = mapped_column(
        Text,
        nullable=True
    )

    voted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True)
    )

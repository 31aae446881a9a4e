"""
Database Models - Production Tracking Tables

Read-side models for the tables the engine queries. The schema consists of:

Reference Tables:
- Machine: Equipment on the shop floor
- Product: Manufactured items with their theoretical cycle time

Event Tables:
- LotRecord: Production runs
- StopEventRecord: Machine stoppages
- QualityIssueRecord: Defect declarations

Every table is scoped by ``project_id``.
"""

import datetime as dt
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from oee_engine.events.records import FailureType, LotStatus, QualityCategory


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# REFERENCE TABLES
# =============================================================================

class Machine(Base):
    """Equipment on which lots run and stops occur"""
    __tablename__ = "machines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    line_id: Mapped[Optional[str]] = mapped_column(String(36))
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    __table_args__ = (
        Index("ix_machines_project", "project_id"),
    )


class Product(Base):
    """Manufactured item"""
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    cycle_time: Mapped[Optional[float]] = mapped_column(Float)  # seconds per unit

    __table_args__ = (
        Index("ix_products_project", "project_id"),
    )


# =============================================================================
# EVENT TABLES
# =============================================================================

class LotRecord(Base):
    """
    Production Lot Table

    One row per production run. ``end_time`` is null while the lot is open.
    """
    __tablename__ = "lots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    machine_id: Mapped[str] = mapped_column(String(36), ForeignKey("machines.id"), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    team_id: Mapped[Optional[str]] = mapped_column(String(36))

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))

    lot_size: Mapped[int] = mapped_column(Integer, default=0)
    ok_parts_produced: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[LotStatus] = mapped_column(SQLEnum(LotStatus), default=LotStatus.ONGOING)
    comment: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())

    product: Mapped["Product"] = relationship()

    __table_args__ = (
        Index("ix_lots_project_date", "project_id", "date"),
        Index("ix_lots_machine", "machine_id"),
    )


class StopEventRecord(Base):
    """Stop Event Table"""
    __tablename__ = "stop_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    machine_id: Mapped[str] = mapped_column(String(36), ForeignKey("machines.id"), nullable=False)
    product_id: Mapped[Optional[str]] = mapped_column(String(36))
    team_id: Mapped[Optional[str]] = mapped_column(String(36))

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))

    failure_type: Mapped[FailureType] = mapped_column(SQLEnum(FailureType), nullable=False)
    cause: Mapped[str] = mapped_column(Text, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_stop_events_project_date", "project_id", "date"),
        Index("ix_stop_events_machine", "machine_id"),
    )


class QualityIssueRecord(Base):
    """Quality Issue Table"""
    __tablename__ = "quality_issues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    machine_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("machines.id"))
    product_id: Mapped[Optional[str]] = mapped_column(String(36))
    team_id: Mapped[Optional[str]] = mapped_column(String(36))
    lot_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("lots.id"))

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    category: Mapped[QualityCategory] = mapped_column(SQLEnum(QualityCategory), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    cause: Mapped[str] = mapped_column(Text, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("ix_quality_issues_project_date", "project_id", "date"),
    )

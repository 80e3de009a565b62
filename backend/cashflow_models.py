"""
Cash Flow Record Tables

SQLAlchemy models backing SqlRecordStore. The analytics engine never reads
these directly; record_store converts rows to the record_models dataclasses.
"""

from datetime import datetime
import uuid

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Boolean, Numeric, ForeignKey,
    Enum as SQLEnum, Index, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

from record_models import FlowDirection, ItemStatus

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    receivables = relationship("ReceivableRow", back_populates="organization")
    payables = relationship("PayableRow", back_populates="organization")
    snapshots = relationship("WorkingCapitalSnapshotRow", back_populates="organization")


class ReceivableRow(Base):
    """Customer invoice (accounts receivable)"""
    __tablename__ = "accounts_receivable"

    id = Column(String(36), primary_key=True, default=_new_id)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    customer_name = Column(String(200), nullable=False)
    invoice_number = Column(String(100), nullable=False)
    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    amount_due = Column(Numeric(15, 2), nullable=False)
    amount_paid = Column(Numeric(15, 2), default=0, nullable=False)
    payment_date = Column(Date, nullable=True)
    status = Column(SQLEnum(ItemStatus), default=ItemStatus.PENDING, nullable=False)
    contact_email = Column(String(200), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    organization = relationship("Organization", back_populates="receivables")

    __table_args__ = (
        CheckConstraint('amount_due >= 0', name='check_ar_amount_due_positive'),
        CheckConstraint('amount_paid >= 0 AND amount_paid <= amount_due', name='check_ar_amount_paid_range'),
        Index('ix_ar_org_due', 'organization_id', 'due_date'),
    )


class PayableRow(Base):
    """Vendor bill (accounts payable)"""
    __tablename__ = "accounts_payable"

    id = Column(String(36), primary_key=True, default=_new_id)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    vendor_name = Column(String(200), nullable=False)
    bill_number = Column(String(100), nullable=False)
    bill_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    amount_due = Column(Numeric(15, 2), nullable=False)
    amount_paid = Column(Numeric(15, 2), default=0, nullable=False)
    payment_date = Column(Date, nullable=True)
    status = Column(SQLEnum(ItemStatus), default=ItemStatus.PENDING, nullable=False)
    contact_email = Column(String(200), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    organization = relationship("Organization", back_populates="payables")

    __table_args__ = (
        CheckConstraint('amount_due >= 0', name='check_ap_amount_due_positive'),
        CheckConstraint('amount_paid >= 0 AND amount_paid <= amount_due', name='check_ap_amount_paid_range'),
        Index('ix_ap_org_due', 'organization_id', 'due_date'),
    )


class WorkingCapitalSnapshotRow(Base):
    """Immutable once written; one per organization and date"""
    __tablename__ = "working_capital_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    snapshot_date = Column(Date, nullable=False)
    current_assets = Column(Numeric(15, 2), nullable=False)
    current_liabilities = Column(Numeric(15, 2), nullable=False)
    inventory = Column(Numeric(15, 2), default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    organization = relationship("Organization", back_populates="snapshots")

    __table_args__ = (
        UniqueConstraint('organization_id', 'snapshot_date', name='uq_wc_snapshot_org_date'),
        CheckConstraint('current_assets >= 0 AND current_liabilities >= 0 AND inventory >= 0',
                        name='check_wc_non_negative'),
    )


class ForecastEntryRow(Base):
    """Forecast cash movement; superseded rows stay in the table"""
    __tablename__ = "cash_flow_forecasts"

    id = Column(String(36), primary_key=True, default=_new_id)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    forecast_date = Column(Date, nullable=False)
    direction = Column(SQLEnum(FlowDirection), nullable=False)
    forecast_amount = Column(Numeric(15, 2), nullable=False)
    category = Column(String(100), default="general", nullable=False)

    superseded = Column(Boolean, default=False, nullable=False)
    superseded_by = Column(String(36), nullable=True)
    superseded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint('forecast_amount >= 0', name='check_forecast_amount_positive'),
        Index('ix_forecast_org_date', 'organization_id', 'forecast_date'),
    )


class SeasonalPatternRow(Base):
    __tablename__ = "seasonal_patterns"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    metric_name = Column(String(100), nullable=False)
    month = Column(Integer, nullable=False)
    seasonal_factor = Column(Numeric(8, 4), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    detected_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint('month >= 1 AND month <= 12', name='check_seasonal_month'),
        CheckConstraint('seasonal_factor > 0', name='check_seasonal_factor_positive'),
        UniqueConstraint('organization_id', 'metric_name', 'month', name='uq_seasonal_org_metric_month'),
    )

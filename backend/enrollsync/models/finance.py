"""
Finance records: fee schedules and school expenses.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Numeric, ForeignKey, Computed, FetchedValue
)
from sqlalchemy.sql import func

from enrollsync.core.database import Base


class Fee(Base):
    """Fee schedule of a grade level."""

    __tablename__ = "tbl_Fees"

    fee_id = Column(Integer, primary_key=True)
    gradelevel_id = Column(Integer, ForeignKey("tbl_GradeLevel.gradelevel_id"), nullable=False)
    tuition_fee = Column(Numeric(18, 2), nullable=False, default=0)
    misc_fee = Column(Numeric(18, 2), nullable=False, default=0)
    other_fee = Column(Numeric(18, 2), nullable=False, default=0)
    total_fee = Column(Numeric(18, 2), Computed("tuition_fee + misc_fee + other_fee"))
    is_active = Column(Boolean, default=True, nullable=False)

    created_date = Column(DateTime, server_default=func.now())
    updated_date = Column(DateTime, nullable=True, onupdate=func.now())


class FeeBreakdown(Base):
    """Line item of a fee schedule."""

    __tablename__ = "tbl_FeeBreakdown"

    breakdown_id = Column(Integer, primary_key=True)
    fee_id = Column(Integer, ForeignKey("tbl_Fees.fee_id"), nullable=False)
    breakdown_type = Column(String(20), nullable=False)
    item_name = Column(String(100), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    display_order = Column(Integer, nullable=False, default=0)

    updated_date = Column(DateTime, nullable=True, onupdate=func.now())


class Expense(Base):
    """Operating expense recorded by the finance office."""

    __tablename__ = "tbl_Expenses"

    expense_id = Column(Integer, primary_key=True)
    expense_code = Column(String(30), nullable=False)
    category = Column(String(50), nullable=False)
    description = Column(String(255), nullable=True)
    amount = Column(Numeric(18, 2), nullable=False)
    expense_date = Column(Date, nullable=False)
    payee = Column(String(150), nullable=True)
    status = Column(String(20), nullable=False, default="Pending")

    # Maintained by a trigger on every write
    row_version = Column(Integer, nullable=True, server_onupdate=FetchedValue())

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

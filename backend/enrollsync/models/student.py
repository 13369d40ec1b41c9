"""
Student records: guardians, students, requirements, payments and ledgers.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, Numeric, ForeignKey, Computed
)
from sqlalchemy.sql import func

from enrollsync.core.database import Base


class Guardian(Base):
    """Parent or guardian of one or more students."""

    __tablename__ = "tbl_Guardians"

    guardian_id = Column(Integer, primary_key=True)
    first_name = Column(String(50), nullable=False)
    middle_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=False)
    contact_num = Column(String(20), nullable=True)
    relationship = Column(String(50), nullable=True)
    email = Column(String(150), nullable=True)

    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class Student(Base):
    """Enrolled or registered student. The key is the school-issued ID."""

    __tablename__ = "tbl_Students"

    student_id = Column(String(6), primary_key=True)
    first_name = Column(String(50), nullable=False)
    middle_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=False)
    suffix = Column(String(10), nullable=True)
    birthdate = Column(Date, nullable=True)
    sex = Column(String(10), nullable=True)
    lrn = Column(String(50), nullable=True)
    grade_level = Column(String(20), nullable=True)
    student_type = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default="Pending")
    guardian_id = Column(Integer, ForeignKey("tbl_Guardians.guardian_id"), nullable=True)
    date_registered = Column(DateTime, server_default=func.now())

    # Derived from birthdate by the enrollment screens on each device
    age = Column(Integer, nullable=True, info={"computed": True})

    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class StudentRequirement(Base):
    """Document requirement submitted for a student (PSA, Form 138, ...)."""

    __tablename__ = "tbl_StudentRequirements"

    requirement_id = Column(Integer, primary_key=True)
    student_id = Column(String(6), ForeignKey("tbl_Students.student_id"), nullable=False)
    requirement_name = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default="not submitted")
    is_verified = Column(Boolean, default=False, nullable=False)
    requirement_type = Column(String(50), nullable=True)

    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class StudentPayment(Base):
    """Cashier payment posted against a student."""

    __tablename__ = "tbl_StudentPayments"

    payment_id = Column(Integer, primary_key=True)
    student_id = Column(String(6), ForeignKey("tbl_Students.student_id"), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    payment_method = Column(String(50), nullable=False)
    or_number = Column(String(50), nullable=False)
    processed_by = Column(String(50), nullable=True)
    school_year = Column(String(20), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class StudentLedger(Base):
    """Per-school-year statement of account."""

    __tablename__ = "tbl_StudentLedgers"

    id = Column(Integer, primary_key=True)
    student_id = Column(String(6), ForeignKey("tbl_Students.student_id"), nullable=False)
    school_year = Column(String(20), nullable=False)
    grade_level = Column(String(20), nullable=True)
    total_charges = Column(Numeric(18, 2), nullable=False, default=0)
    total_payments = Column(Numeric(18, 2), nullable=False, default=0)
    total_discount = Column(Numeric(18, 2), nullable=False, default=0)
    balance = Column(Numeric(18, 2), Computed("total_charges - total_payments - total_discount"))
    is_closed = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

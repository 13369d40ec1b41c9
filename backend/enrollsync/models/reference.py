"""
Reference data shared by every other record: school years, roles,
user accounts and grade levels.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, Numeric, ForeignKey
from sqlalchemy.sql import func

from enrollsync.core.database import Base


class SchoolYear(Base):
    """School year (e.g. 2024-2025)."""

    __tablename__ = "tbl_SchoolYear"

    school_year_id = Column(Integer, primary_key=True)
    school_year = Column(String(20), nullable=False, unique=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=False, nullable=False)
    is_open = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class Role(Base):
    """Staff role with its base salary bracket."""

    __tablename__ = "tbl_roles"

    role_id = Column(Integer, primary_key=True)
    role_name = Column(String(50), nullable=False)
    base_salary = Column(Numeric(12, 2), nullable=False, default=0)
    allowance = Column(Numeric(12, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    created_date = Column(DateTime, server_default=func.now())
    updated_date = Column(DateTime, nullable=True, onupdate=func.now())


class UserAccount(Base):
    """Employee / administrator account."""

    __tablename__ = "tbl_Users"

    user_id = Column(Integer, primary_key=True)
    system_id = Column(String(50), nullable=False, unique=True)
    first_name = Column(String(50), nullable=False)
    mid_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=False)
    email = Column(String(150), nullable=False)
    contact_num = Column(String(20), nullable=True)
    user_role = Column(String(50), nullable=False)
    role_id = Column(Integer, ForeignKey("tbl_roles.role_id"), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    date_hired = Column(DateTime, nullable=True)

    # Password hashes stay on the device they were set on
    password = Column(String(255), nullable=True, info={"computed": True})

    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class GradeLevel(Base):
    """Grade level (Kinder, Grade 1 ... Grade 6)."""

    __tablename__ = "tbl_GradeLevel"

    gradelevel_id = Column(Integer, primary_key=True)
    grade_level_name = Column(String(50), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

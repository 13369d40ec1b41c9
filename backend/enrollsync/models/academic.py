"""
Curriculum and grading: sections, subjects, enrollments and grades.
"""

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey
from sqlalchemy.sql import func

from enrollsync.core.database import Base


class Section(Base):
    """Class section of a grade level."""

    __tablename__ = "tbl_Sections"

    section_id = Column(Integer, primary_key=True)
    section_name = Column(String(100), nullable=False)
    gradelevel_id = Column(Integer, ForeignKey("tbl_GradeLevel.gradelevel_id"), nullable=False)
    classroom_id = Column(Integer, nullable=True)
    adviser_id = Column(Integer, ForeignKey("tbl_Users.user_id"), nullable=True)
    capacity = Column(Integer, nullable=False, default=40)
    notes = Column(String(255), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class Subject(Base):
    """Subject offered for a grade level."""

    __tablename__ = "tbl_Subjects"

    subject_id = Column(Integer, primary_key=True)
    gradelevel_id = Column(Integer, ForeignKey("tbl_GradeLevel.gradelevel_id"), nullable=False)
    subject_code = Column(String(20), nullable=True)
    subject_name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class StudentSectionEnrollment(Base):
    """A student placed in a section for a school year."""

    __tablename__ = "tbl_StudentSectionEnrollment"

    enrollment_id = Column(Integer, primary_key=True)
    student_id = Column(String(6), ForeignKey("tbl_Students.student_id"), nullable=False)
    section_id = Column(Integer, ForeignKey("tbl_Sections.section_id"), nullable=False)
    school_year = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="Enrolled")

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class Grade(Base):
    """Quarterly grade of a student in a subject."""

    __tablename__ = "tbl_Grades"

    grade_id = Column(Integer, primary_key=True)
    student_id = Column(String(6), ForeignKey("tbl_Students.student_id"), nullable=False)
    subject_id = Column(Integer, ForeignKey("tbl_Subjects.subject_id"), nullable=False)
    section_id = Column(Integer, ForeignKey("tbl_Sections.section_id"), nullable=False)
    school_year = Column(String(20), nullable=False)
    grading_period = Column(String(10), nullable=False)
    quiz = Column(Numeric(5, 2), nullable=True)
    exam = Column(Numeric(5, 2), nullable=True)
    final_grade = Column(Numeric(5, 2), nullable=True)
    teacher_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

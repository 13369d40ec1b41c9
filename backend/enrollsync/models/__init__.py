from .reference import SchoolYear, Role, UserAccount, GradeLevel
from .student import Guardian, Student, StudentRequirement, StudentPayment, StudentLedger
from .academic import Section, Subject, StudentSectionEnrollment, Grade
from .finance import Fee, FeeBreakdown, Expense
from .sync_metadata import (
    SyncHistory, SyncTableLog, QueuedOperation, SyncRunStatus, SyncRunType, QueuedOperationType
)

__all__ = [
    "SchoolYear",
    "Role",
    "UserAccount",
    "GradeLevel",
    "Guardian",
    "Student",
    "StudentRequirement",
    "StudentPayment",
    "StudentLedger",
    "Section",
    "Subject",
    "StudentSectionEnrollment",
    "Grade",
    "Fee",
    "FeeBreakdown",
    "Expense",
    "SyncHistory",
    "SyncTableLog",
    "QueuedOperation",
    "SyncRunStatus",
    "SyncRunType",
    "QueuedOperationType",
]

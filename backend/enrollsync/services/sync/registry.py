"""
Synced entity registry.

Entities are listed in dependency order: lookup tables first, then the
records that reference them, then the deeply dependent ones. Both push and
pull walk the list in this order.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from enrollsync.models import (
    SchoolYear, Role, UserAccount, GradeLevel,
    Guardian, Student, StudentRequirement, StudentPayment, StudentLedger,
    Fee, FeeBreakdown, Expense,
    Section, Subject, StudentSectionEnrollment, Grade,
)
from .table_spec import SyncEntity


@dataclass(frozen=True)
class ForeignKeyCheck:
    """A child row is only written when its parent already exists on the target."""
    child_table: str
    child_column: str
    parent_table: str
    parent_column: str


class SyncRegistry:
    """Ordered set of synced entities plus their foreign key pre-checks."""

    def __init__(
        self,
        entities: Sequence[SyncEntity],
        foreign_key_checks: Iterable[ForeignKeyCheck] = ()
    ):
        self._entities: List[SyncEntity] = list(entities)
        self._by_table: Dict[str, SyncEntity] = {}
        for entity in self._entities:
            if entity.table_name in self._by_table:
                raise ValueError(f"Entity {entity.table_name} registered twice")
            self._by_table[entity.table_name] = entity
        self._checks: List[ForeignKeyCheck] = list(foreign_key_checks)

    @property
    def entities(self) -> List[SyncEntity]:
        return list(self._entities)

    @property
    def table_names(self) -> List[str]:
        return [entity.table_name for entity in self._entities]

    def get(self, table_name: str) -> Optional[SyncEntity]:
        return self._by_table.get(table_name)

    def checks_for(self, table_name: str) -> List[ForeignKeyCheck]:
        return [check for check in self._checks if check.child_table == table_name]

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self):
        return iter(self._entities)


DEFAULT_ENTITIES = [
    # Reference data
    SyncEntity(SchoolYear, "school_year_id"),
    SyncEntity(Role, "role_id"),
    SyncEntity(UserAccount, "user_ID"),
    SyncEntity(GradeLevel, "gradelevel_ID"),

    # Student records
    SyncEntity(Guardian, "guardian_id"),
    SyncEntity(Student, "student_id"),
    SyncEntity(StudentRequirement, "requirement_id"),
    SyncEntity(StudentPayment, "payment_id"),
    SyncEntity(StudentLedger, "id"),

    # Finance
    SyncEntity(Fee, "fee_ID"),
    SyncEntity(FeeBreakdown, "breakdown_ID"),
    SyncEntity(Expense, "expense_ID"),

    # Curriculum, then what depends on it
    SyncEntity(Section, "SectionID"),
    SyncEntity(Subject, "SubjectID"),
    SyncEntity(StudentSectionEnrollment, "enrollment_id"),
    SyncEntity(Grade, "grade_id"),
]

DEFAULT_FOREIGN_KEY_CHECKS = [
    ForeignKeyCheck("tbl_StudentSectionEnrollment", "student_id", "tbl_Students", "student_id"),
    ForeignKeyCheck("tbl_StudentSectionEnrollment", "section_id", "tbl_Sections", "section_id"),
    ForeignKeyCheck("tbl_Grades", "student_id", "tbl_Students", "student_id"),
    ForeignKeyCheck("tbl_Grades", "subject_id", "tbl_Subjects", "subject_id"),
    ForeignKeyCheck("tbl_Grades", "section_id", "tbl_Sections", "section_id"),
]


def build_default_registry() -> SyncRegistry:
    return SyncRegistry(DEFAULT_ENTITIES, DEFAULT_FOREIGN_KEY_CHECKS)

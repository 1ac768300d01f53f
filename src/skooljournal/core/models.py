from dataclasses import dataclass, field, replace
import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


RecordId = Union[int, str]


class GradingSystem(str, Enum):
    FIVE_POINT = "five_point"
    CUMULATIVE = "cumulative"

    @classmethod
    def parse(cls, value: Any) -> "GradingSystem":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        return cls.FIVE_POINT


class AssignmentType(str, Enum):
    CONTROL_WORK = "control_work"
    TEST_WORK = "test_work"
    CURRENT_WORK = "current_work"
    HOMEWORK = "homework"
    CLASSWORK = "classwork"
    PROJECT_WORK = "project_work"
    CLASS_ASSIGNMENT = "class_assignment"


class LessonStatus(str, Enum):
    NOT_CONDUCTED = "not_conducted"
    CONDUCTED = "conducted"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> "LessonStatus":
        try:
            return cls(str(value)) if value else cls.NOT_CONDUCTED
        except ValueError:
            return cls.NOT_CONDUCTED


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime(value.year, value.month, value.day)
    else:
        text = str(value or "").strip()
        if not text:
            raise ValueError("created_at is required")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        result = datetime.fromisoformat(text)
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


@dataclass(frozen=True)
class Grade:
    id: Optional[RecordId]
    student_id: RecordId
    subject_id: RecordId
    class_id: RecordId
    teacher_id: RecordId
    score: float
    grade_type: str
    created_at: datetime
    comment: Optional[str] = None
    subgroup_id: Optional[RecordId] = None
    schedule_id: Optional[RecordId] = None
    assignment_id: Optional[RecordId] = None

    @property
    def day(self) -> date:
        return self.created_at.date()

    def with_score(self, score: float) -> "Grade":
        return replace(self, score=score)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Grade":
        score = float(_pick(data, "score", "grade", default=0))
        if not math.isfinite(score):
            raise ValueError(f"Grade {_pick(data, 'id', '$id')} has a non-finite score")
        return cls(
            id=_pick(data, "id", "$id"),
            student_id=_pick(data, "studentId", "student_id"),
            subject_id=_pick(data, "subjectId", "subject_id"),
            class_id=_pick(data, "classId", "class_id"),
            teacher_id=_pick(data, "teacherId", "teacher_id"),
            score=score,
            grade_type=str(_pick(data, "gradeType", "grade_type", default="")),
            created_at=parse_datetime(_pick(data, "createdAt", "created_at", "$createdAt")),
            comment=_pick(data, "comment"),
            subgroup_id=_pick(data, "subgroupId", "subgroup_id"),
            schedule_id=_pick(data, "scheduleId", "schedule_id"),
            assignment_id=_pick(data, "assignmentId", "assignment_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "subjectId": self.subject_id,
            "classId": self.class_id,
            "teacherId": self.teacher_id,
            "score": self.score,
            "gradeType": self.grade_type,
            "comment": self.comment,
            "subgroupId": self.subgroup_id,
            "scheduleId": self.schedule_id,
            "assignmentId": self.assignment_id,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Assignment:
    id: RecordId
    schedule_id: RecordId
    class_id: RecordId
    subject_id: RecordId
    teacher_id: RecordId
    assignment_type: AssignmentType
    max_score: float
    subgroup_id: Optional[RecordId] = None
    description: Optional[str] = None
    planned_for: bool = False
    display_order: int = 0

    def __post_init__(self) -> None:
        if self.max_score <= 0:
            raise ValueError(f"Assignment {self.id} must have max_score greater than 0")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Assignment":
        # maxScore arrives as text from the store ("10", "7.5")
        return cls(
            id=_pick(data, "id", "$id"),
            schedule_id=_pick(data, "scheduleId", "schedule_id"),
            class_id=_pick(data, "classId", "class_id"),
            subject_id=_pick(data, "subjectId", "subject_id"),
            teacher_id=_pick(data, "teacherId", "teacher_id"),
            assignment_type=AssignmentType(_pick(data, "assignmentType", "assignment_type")),
            max_score=float(_pick(data, "maxScore", "max_score", default=0)),
            subgroup_id=_pick(data, "subgroupId", "subgroup_id"),
            description=_pick(data, "description"),
            planned_for=bool(_pick(data, "plannedFor", "planned_for", default=False)),
            display_order=int(_pick(data, "displayOrder", "display_order", default=0)),
        )


@dataclass(frozen=True)
class LessonSlot:
    id: RecordId
    class_id: RecordId
    subject_id: RecordId
    schedule_date: Optional[date]
    start_time: str = ""
    end_time: str = ""
    status: LessonStatus = LessonStatus.NOT_CONDUCTED
    subgroup_id: Optional[RecordId] = None
    assignments: Tuple[Assignment, ...] = field(default_factory=tuple)

    @property
    def is_conducted(self) -> bool:
        return self.status == LessonStatus.CONDUCTED

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LessonSlot":
        return cls(
            id=_pick(data, "id", "$id"),
            class_id=_pick(data, "classId", "class_id"),
            subject_id=_pick(data, "subjectId", "subject_id"),
            schedule_date=parse_date(_pick(data, "scheduleDate", "schedule_date")),
            start_time=str(_pick(data, "startTime", "start_time", default="")),
            end_time=str(_pick(data, "endTime", "end_time", default="")),
            status=LessonStatus.parse(_pick(data, "status")),
            subgroup_id=_pick(data, "subgroupId", "subgroup_id"),
        )


@dataclass(frozen=True)
class ClassConfig:
    id: RecordId
    grading_system: GradingSystem = GradingSystem.FIVE_POINT
    student_ids: Tuple[RecordId, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassConfig":
        return cls(
            id=_pick(data, "id", "$id"),
            grading_system=GradingSystem.parse(_pick(data, "gradingSystem", "grading_system")),
            student_ids=tuple(_pick(data, "studentIds", "student_ids", default=())),
        )

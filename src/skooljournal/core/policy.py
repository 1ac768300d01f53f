from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from skooljournal.core.models import Assignment, AssignmentType, Grade, GradingSystem


FIVE_POINT_MIN = 1.0
FIVE_POINT_MAX = 5.0

GRADE_TYPE_WEIGHTS: Dict[str, float] = {
    "test": 2,
    "exam": 3,
    "homework": 1,
    "project": 2,
    "classwork": 1,
    "control-work": 2,
    "Текущая": 1,
    "Контрольная": 2,
    "Экзамен": 3,
    "Практическая": 1.5,
    "Домашняя": 1,
}

DEFAULT_WEIGHT = 1.0

VALID_GRADE_TYPES = frozenset(GRADE_TYPE_WEIGHTS)

GRADE_TYPE_LABELS: Dict[str, str] = {
    "test": "Test",
    "exam": "Exam",
    "homework": "Homework",
    "project": "Project",
    "classwork": "Classwork",
    "control-work": "Control work",
    "Текущая": "Current grade",
    "Контрольная": "Control work",
    "Экзамен": "Exam",
    "Практическая": "Practical work",
    "Домашняя": "Homework",
}

ASSIGNMENT_TYPE_LABELS: Dict[AssignmentType, str] = {
    AssignmentType.CONTROL_WORK: "Control work",
    AssignmentType.TEST_WORK: "Test work",
    AssignmentType.CURRENT_WORK: "Current work",
    AssignmentType.HOMEWORK: "Homework",
    AssignmentType.CLASSWORK: "Work in class",
    AssignmentType.PROJECT_WORK: "Project",
    AssignmentType.CLASS_ASSIGNMENT: "Class assignment",
}

ASSIGNMENT_TYPE_SHORT_LABELS: Dict[AssignmentType, str] = {
    AssignmentType.CONTROL_WORK: "CW",
    AssignmentType.TEST_WORK: "Test",
    AssignmentType.CURRENT_WORK: "Cur",
    AssignmentType.HOMEWORK: "HW",
    AssignmentType.CLASSWORK: "Work",
    AssignmentType.PROJECT_WORK: "Proj",
    AssignmentType.CLASS_ASSIGNMENT: "Class",
}


@dataclass(frozen=True)
class DisplayValue:
    text: str
    score: float
    max_score: Optional[float] = None
    percentage: Optional[float] = None
    missing_max: bool = False


def cap_percentage(value: float) -> float:
    return max(0.0, min(value, 100.0))


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def classify(
    grading_system: GradingSystem,
    grade: Grade,
    assignment: Optional[Assignment] = None,
) -> DisplayValue:
    """Decide how a single grade is shown under the class's grading system.

    The caller resolves ``assignment`` through the binder; under the cumulative
    system a missing assignment yields the raw score flagged ``missing_max``.
    """
    if grading_system == GradingSystem.CUMULATIVE:
        if assignment is None:
            return DisplayValue(text=format_number(grade.score), score=grade.score, missing_max=True)
        return DisplayValue(
            text=f"{format_number(grade.score)}/{format_number(assignment.max_score)}",
            score=grade.score,
            max_score=assignment.max_score,
            percentage=cap_percentage(grade.score / assignment.max_score * 100),
        )
    return DisplayValue(text=format_number(grade.score), score=grade.score)


def weight_for(grade_type: str, weights: Optional[Mapping[str, float]] = None) -> float:
    table = GRADE_TYPE_WEIGHTS if weights is None else weights
    return float(table.get(grade_type, DEFAULT_WEIGHT))


def score_floor(grading_system: GradingSystem) -> float:
    if grading_system == GradingSystem.FIVE_POINT:
        return FIVE_POINT_MIN
    return 0.0


def score_ceiling(grading_system: GradingSystem, assignment: Optional[Assignment] = None) -> Optional[float]:
    if assignment is not None:
        return assignment.max_score
    if grading_system == GradingSystem.FIVE_POINT:
        return FIVE_POINT_MAX
    return None


def performance_band(percentage: float) -> str:
    score = cap_percentage(percentage)
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    if score >= 60:
        return "satisfactory"
    if score >= 40:
        return "weak"
    return "poor"


def five_point_band(score: float) -> str:
    if score >= 4:
        return "good"
    if score >= 3:
        return "satisfactory"
    return "poor"


def grade_type_label(grade_type: str) -> str:
    return GRADE_TYPE_LABELS.get(grade_type, grade_type)


def assignment_type_label(assignment_type: AssignmentType, *, short: bool = False) -> str:
    labels = ASSIGNMENT_TYPE_SHORT_LABELS if short else ASSIGNMENT_TYPE_LABELS
    return labels.get(assignment_type, assignment_type.value)

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from skooljournal.core.binder import resolve_assignment
from skooljournal.core.models import Assignment, Grade, GradingSystem, RecordId
from skooljournal.core.policy import FIVE_POINT_MAX, cap_percentage, weight_for


logger = logging.getLogger(__name__)

NO_DATA = "-"
OVERALL_KEY = "overall"

# Passing this as the weight table turns the weighted average into a plain mean.
FLAT_WEIGHTS: Mapping[str, float] = {}


class _AnySubgroup:
    def __repr__(self) -> str:
        return "ANY_SUBGROUP"


ANY_SUBGROUP: Any = _AnySubgroup()


@dataclass(frozen=True)
class SubjectAverage:
    average: str
    percentage: str
    max_score: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.average == NO_DATA

    def to_dict(self) -> Dict[str, str]:
        payload = {"average": self.average, "percentage": self.percentage}
        if self.max_score is not None:
            payload["maxScore"] = self.max_score
        return payload

    @classmethod
    def from_dict(cls, data: Any) -> "SubjectAverage":
        if not isinstance(data, dict):
            raise ValueError("average payload must be an object")
        average = data.get("average")
        percentage = data.get("percentage")
        if average is None or percentage is None:
            raise ValueError("average payload requires average and percentage")
        max_score = data.get("maxScore")

        average = _checked_number(average, "average")
        percentage = _checked_number(percentage, "percentage", percent=True)
        if max_score is not None:
            max_score = _checked_number(max_score, "maxScore")
        if (average == NO_DATA) != (percentage == NO_DATA):
            raise ValueError("average and percentage must both be present or both be missing")
        return cls(average=average, percentage=percentage, max_score=max_score)


def _checked_number(value: Any, name: str, *, percent: bool = False) -> str:
    """Validate one numeric field of a wire average and return it as text."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValueError(f"{name} must be a number or {NO_DATA!r}")
    text = str(value).strip()
    if text == NO_DATA:
        return text

    digits = text[:-1].strip() if percent and text.endswith("%") else text
    try:
        number = float(digits)
    except ValueError as exc:
        raise ValueError(f"{name} is not numeric: {text!r}") from exc
    if not math.isfinite(number):
        raise ValueError(f"{name} must be finite: {text!r}")
    if percent and not 0 <= number <= 100:
        raise ValueError(f"{name} must lie within 0..100: {text!r}")
    return text


EMPTY_AVERAGE = SubjectAverage(average=NO_DATA, percentage=NO_DATA)


def _format_average(value: float) -> str:
    return f"{value:.1f}"


def _format_percentage(value: float) -> str:
    return f"{cap_percentage(value):.1f}%"


def average_value(result: SubjectAverage) -> Optional[float]:
    """Numeric percentage of an aggregate, ``None`` for the no-data sentinel."""
    text = result.percentage.strip().rstrip("%").strip()
    if not text or text == NO_DATA:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def filter_by_date_range(
    grades: Iterable[Grade],
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> List[Grade]:
    results: List[Grade] = []
    for grade in grades:
        day = grade.day
        if from_date is not None and day < from_date:
            continue
        if to_date is not None and day > to_date:
            continue
        results.append(grade)
    return results


def unique_grades(grades: Iterable[Grade]) -> List[Grade]:
    seen = set()
    results: List[Grade] = []
    for grade in grades:
        if grade.id is not None:
            if grade.id in seen:
                continue
            seen.add(grade.id)
        results.append(grade)
    return results


def group_by_slot(grades: Iterable[Grade]) -> Dict[Optional[RecordId], List[Grade]]:
    grouped: Dict[Optional[RecordId], List[Grade]] = {}
    for grade in grades:
        grouped.setdefault(grade.schedule_id, []).append(grade)
    return grouped


def _in_scope(grade: Grade, student_id: RecordId, subject_id: Any, subgroup_id: Any) -> bool:
    if grade.student_id != student_id:
        return False
    if subject_id is not None and grade.subject_id != subject_id:
        return False
    if subgroup_id is ANY_SUBGROUP:
        return True
    return grade.subgroup_id == subgroup_id


def _five_point(grades: Sequence[Grade], weights: Optional[Mapping[str, float]]) -> SubjectAverage:
    weighted_sum = 0.0
    total_weight = 0.0
    for grade in grades:
        weight = weight_for(grade.grade_type, weights)
        weighted_sum += grade.score * weight
        total_weight += weight

    if total_weight <= 0:
        return EMPTY_AVERAGE

    average = weighted_sum / total_weight
    return SubjectAverage(
        average=_format_average(average),
        percentage=_format_percentage(average / FIVE_POINT_MAX * 100),
    )


def _cumulative(grades: Sequence[Grade], assignments: Sequence[Assignment]) -> SubjectAverage:
    earned = 0.0
    possible = 0.0
    skipped = 0
    for slot_grades in group_by_slot(grades).values():
        for grade in slot_grades:
            assignment = resolve_assignment(grade, assignments)
            if assignment is None:
                skipped += 1
                continue
            earned += grade.score
            possible += assignment.max_score

    if skipped:
        logger.debug("Excluded %d grade(s) without a resolvable assignment", skipped)

    if possible <= 0:
        return EMPTY_AVERAGE

    return SubjectAverage(
        average=_format_average(earned),
        percentage=_format_percentage(earned / possible * 100),
        max_score=_format_average(possible),
    )


def aggregate(
    grades: Iterable[Grade],
    subject_id: Optional[RecordId],
    student_id: RecordId,
    grading_system: GradingSystem,
    subgroup_id: Union[RecordId, None, Any] = None,
    assignments: Sequence[Assignment] = (),
    *,
    weights: Optional[Mapping[str, float]] = None,
) -> SubjectAverage:
    """Summarise one student's grades in one subject.

    ``subgroup_id`` must match exactly: ``None`` selects only grades without a
    subgroup. ``ANY_SUBGROUP`` disables the subgroup filter and ``subject_id``
    of ``None`` spans every subject.
    """
    selected = []
    for grade in unique_grades(grades):
        if not _in_scope(grade, student_id, subject_id, subgroup_id):
            continue
        if not math.isfinite(grade.score):
            logger.warning("Ignoring grade %s with non-finite score %r", grade.id, grade.score)
            continue
        selected.append(grade)
    if not selected:
        return EMPTY_AVERAGE

    if grading_system == GradingSystem.CUMULATIVE:
        return _cumulative(selected, assignments)
    return _five_point(selected, weights)


def aggregate_overall(
    grades: Iterable[Grade],
    student_id: RecordId,
    grading_system: GradingSystem,
    assignments: Sequence[Assignment] = (),
    *,
    weights: Optional[Mapping[str, float]] = None,
) -> SubjectAverage:
    return aggregate(
        grades,
        None,
        student_id,
        grading_system,
        ANY_SUBGROUP,
        assignments,
        weights=weights,
    )


def class_averages(
    grades: Iterable[Grade],
    student_ids: Iterable[RecordId],
    subject_ids: Iterable[RecordId],
    grading_system: GradingSystem,
    assignments: Sequence[Assignment] = (),
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    *,
    weights: Optional[Mapping[str, float]] = None,
) -> Dict[str, Dict[str, SubjectAverage]]:
    in_range = filter_by_date_range(unique_grades(grades), from_date, to_date)
    subjects = list(subject_ids)

    matrix: Dict[str, Dict[str, SubjectAverage]] = {}
    for student_id in student_ids:
        row: Dict[str, SubjectAverage] = {}
        for subject_id in subjects:
            result = aggregate(
                in_range,
                subject_id,
                student_id,
                grading_system,
                ANY_SUBGROUP,
                assignments,
                weights=weights,
            )
            if not result.is_empty:
                row[str(subject_id)] = result
        row[OVERALL_KEY] = aggregate_overall(in_range, student_id, grading_system, assignments, weights=weights)
        matrix[str(student_id)] = row
    return matrix

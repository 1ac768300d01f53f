import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from skooljournal.core.models import Assignment, Grade, GradingSystem, LessonSlot, RecordId


logger = logging.getLogger(__name__)


def resolve_assignment(grade: Grade, assignments: Sequence[Assignment]) -> Optional[Assignment]:
    """Find the assignment a grade was earned against.

    ``assignment_id`` is the precise link and always wins. Grades without it
    fall back to the first assignment of the same lesson slot.
    """
    if grade.assignment_id is not None:
        for assignment in assignments:
            if assignment.id == grade.assignment_id:
                return assignment

    if grade.schedule_id is None:
        return None

    matches = [a for a in assignments if a.schedule_id == grade.schedule_id]
    if len(matches) > 1:
        logger.debug(
            "Grade %s matched %d assignments on schedule %s; using the first",
            grade.id,
            len(matches),
            grade.schedule_id,
        )
    return matches[0] if matches else None


def _sort_key(slot: LessonSlot) -> Tuple[str, str]:
    return (slot.schedule_date.isoformat() if slot.schedule_date else "", slot.start_time or "")


def assignments_by_slot(assignments: Iterable[Assignment]) -> Dict[RecordId, Tuple[Assignment, ...]]:
    grouped: Dict[RecordId, List[Assignment]] = {}
    for assignment in assignments:
        grouped.setdefault(assignment.schedule_id, []).append(assignment)
    return {
        schedule_id: tuple(sorted(items, key=lambda a: a.display_order))
        for schedule_id, items in grouped.items()
    }


def lesson_slots_with_assignments(
    schedules: Iterable[LessonSlot],
    subject_id: RecordId,
    assignments: Iterable[Assignment] = (),
) -> List[LessonSlot]:
    by_slot = assignments_by_slot(assignments)

    seen = set()
    slots: List[LessonSlot] = []
    for schedule in schedules:
        if schedule.subject_id != subject_id or schedule.schedule_date is None:
            continue
        key = (schedule.schedule_date, schedule.id)
        if key in seen:
            continue
        seen.add(key)
        slots.append(replace(schedule, assignments=by_slot.get(schedule.id, ())))

    slots.sort(key=_sort_key)
    return slots


def grades_for_slot(grades: Iterable[Grade], student_id: RecordId, slot_id: RecordId) -> List[Grade]:
    return [g for g in grades if g.student_id == student_id and g.schedule_id == slot_id]


def pending_assignments(
    slot: LessonSlot,
    student_id: RecordId,
    existing_grades: Iterable[Grade],
) -> List[Assignment]:
    graded = {
        g.assignment_id
        for g in existing_grades
        if g.student_id == student_id and g.assignment_id is not None
    }
    return [a for a in slot.assignments if a.id not in graded]


def can_grade(
    slot: LessonSlot,
    student_id: RecordId,
    existing_grades: Iterable[Grade],
    grading_system: GradingSystem,
) -> bool:
    if not slot.is_conducted:
        return False
    if grading_system == GradingSystem.FIVE_POINT:
        return True
    return bool(pending_assignments(slot, student_id, existing_grades))

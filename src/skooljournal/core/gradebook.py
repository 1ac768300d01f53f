from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from skooljournal.core.aggregator import SubjectAverage, aggregate, average_value, unique_grades
from skooljournal.core.binder import can_grade, grades_for_slot, lesson_slots_with_assignments, resolve_assignment
from skooljournal.core.models import Assignment, Grade, GradingSystem, LessonSlot, RecordId
from skooljournal.core.policy import (
    DisplayValue,
    assignment_type_label,
    classify,
    five_point_band,
    grade_type_label,
    performance_band,
)


@dataclass(frozen=True)
class GradebookCell:
    slot_id: RecordId
    grades: Tuple[Grade, ...]
    display: Tuple[DisplayValue, ...]
    can_grade: bool


@dataclass(frozen=True)
class GradebookRow:
    student_id: RecordId
    cells: Tuple[GradebookCell, ...]
    average: SubjectAverage


@dataclass(frozen=True)
class Gradebook:
    subject_id: RecordId
    grading_system: GradingSystem
    slots: Tuple[LessonSlot, ...]
    rows: Tuple[GradebookRow, ...] = field(default_factory=tuple)

    def _band(self, shown: DisplayValue) -> Optional[str]:
        if shown.percentage is not None:
            return performance_band(shown.percentage)
        if self.grading_system == GradingSystem.FIVE_POINT:
            return five_point_band(shown.score)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subjectId": self.subject_id,
            "gradingSystem": self.grading_system.value,
            "slots": [
                {
                    "id": slot.id,
                    "date": slot.schedule_date.isoformat() if slot.schedule_date else None,
                    "startTime": slot.start_time,
                    "endTime": slot.end_time,
                    "status": slot.status.value,
                    "assignments": [
                        {
                            "id": a.id,
                            "assignmentType": a.assignment_type.value,
                            "label": assignment_type_label(a.assignment_type),
                            "shortLabel": assignment_type_label(a.assignment_type, short=True),
                            "maxScore": a.max_score,
                            "plannedFor": a.planned_for,
                        }
                        for a in slot.assignments
                    ],
                }
                for slot in self.slots
            ],
            "rows": [
                {
                    "studentId": row.student_id,
                    "average": row.average.to_dict(),
                    "band": _average_band(row.average),
                    "cells": [
                        {
                            "slotId": cell.slot_id,
                            "canGrade": cell.can_grade,
                            "grades": [
                                {
                                    "id": grade.id,
                                    "gradeType": grade.grade_type,
                                    "gradeTypeLabel": grade_type_label(grade.grade_type),
                                    "text": shown.text,
                                    "band": self._band(shown),
                                    "percentage": shown.percentage,
                                    "missingMax": shown.missing_max,
                                }
                                for grade, shown in zip(cell.grades, cell.display)
                            ],
                        }
                        for cell in row.cells
                    ],
                }
                for row in self.rows
            ],
        }


def _average_band(average: SubjectAverage) -> Optional[str]:
    value = average_value(average)
    return performance_band(value) if value is not None else None


def build_gradebook(
    student_ids: Iterable[RecordId],
    schedules: Iterable[LessonSlot],
    grades: Iterable[Grade],
    subject_id: RecordId,
    grading_system: GradingSystem,
    assignments: Sequence[Assignment] = (),
    subgroup_id: Optional[RecordId] = None,
    averages: Optional[Mapping[RecordId, SubjectAverage]] = None,
) -> Gradebook:
    """Lay out the per-class/per-subject journal: one row per student, one
    cell per lesson slot. ``averages`` overrides the locally computed average
    column, e.g. with values resolved from the remote averaging service."""
    slots = lesson_slots_with_assignments(schedules, subject_id, assignments)
    subject_grades = [g for g in unique_grades(grades) if g.subject_id == subject_id]

    rows: List[GradebookRow] = []
    for student_id in student_ids:
        cells = []
        for slot in slots:
            slot_grades = grades_for_slot(subject_grades, student_id, slot.id)
            cells.append(
                GradebookCell(
                    slot_id=slot.id,
                    grades=tuple(slot_grades),
                    display=tuple(
                        classify(grading_system, g, resolve_assignment(g, assignments)) for g in slot_grades
                    ),
                    can_grade=can_grade(slot, student_id, subject_grades, grading_system),
                )
            )

        if averages is not None and student_id in averages:
            average = averages[student_id]
        else:
            average = aggregate(subject_grades, subject_id, student_id, grading_system, subgroup_id, assignments)
        rows.append(GradebookRow(student_id=student_id, cells=tuple(cells), average=average))

    return Gradebook(subject_id=subject_id, grading_system=grading_system, slots=tuple(slots), rows=tuple(rows))

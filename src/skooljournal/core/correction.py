import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from skooljournal.core.models import Assignment, Grade, GradingSystem
from skooljournal.core.policy import format_number, score_ceiling, score_floor


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionResult:
    accepted: Grade
    corrected: bool = False
    notice: Optional[str] = None


def _linked_assignment(candidate: Grade, assignments: Sequence[Assignment]) -> Optional[Assignment]:
    if candidate.assignment_id is None:
        return None
    for assignment in assignments:
        if assignment.id == candidate.assignment_id:
            return assignment
    return None


def submit_grade(
    candidate: Grade,
    assignments: Sequence[Assignment],
    grading_system: GradingSystem,
) -> SubmissionResult:
    """Bring a submitted score inside its allowed range before it is stored.

    Out-of-range scores are clamped, never rejected. A score that is not a
    finite number has no nearest valid value and raises ``ValueError``.
    """
    if not math.isfinite(candidate.score):
        raise ValueError(f"Score must be a finite number, got {candidate.score!r}")

    assignment = _linked_assignment(candidate, assignments)
    ceiling = score_ceiling(grading_system, assignment)
    floor = score_floor(grading_system)

    score = candidate.score
    if ceiling is not None and score > ceiling:
        score = ceiling
    elif score < floor:
        score = floor

    if score == candidate.score:
        return SubmissionResult(accepted=candidate)

    if assignment is not None and candidate.score > assignment.max_score:
        notice = (
            f"Score {format_number(candidate.score)} exceeds the maximum of "
            f"{format_number(assignment.max_score)} for assignment {assignment.id}; "
            f"recorded as {format_number(score)}."
        )
    else:
        notice = f"Score {format_number(candidate.score)} is out of range; recorded as {format_number(score)}."

    logger.warning("Grade for student %s corrected: %s", candidate.student_id, notice)
    return SubmissionResult(accepted=candidate.with_score(score), corrected=True, notice=notice)

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, Mapping, Optional, Sequence

from skooljournal.core.aggregator import (
    SubjectAverage,
    aggregate,
    average_value,
    class_averages,
    filter_by_date_range,
)
from skooljournal.core.models import Assignment, Grade, GradingSystem, RecordId
from skooljournal.services.averages_service import AveragesServiceError, RemoteAveragesService


logger = logging.getLogger(__name__)

SOURCE_REMOTE = "remote"
SOURCE_LOCAL = "local"

AGREEMENT_TOLERANCE = 0.1


@dataclass(frozen=True)
class AverageKey:
    """Everything an aggregate depends on; callers caching results key by it."""

    student_id: RecordId
    subject_id: RecordId
    grading_system: GradingSystem
    subgroup_id: Optional[RecordId] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None


@dataclass(frozen=True)
class ResolvedAverage:
    value: SubjectAverage
    source: str
    discrepancy: bool = False


@dataclass(frozen=True)
class ResolvedClassAverages:
    values: Dict[str, Dict[str, SubjectAverage]]
    source: str


def _number(text: Optional[str]) -> Optional[float]:
    if text is None:
        return None
    try:
        return float(text.strip().rstrip("%"))
    except ValueError:
        return None


def averages_agree(a: SubjectAverage, b: SubjectAverage, tolerance: float = AGREEMENT_TOLERANCE) -> bool:
    if a.is_empty or b.is_empty:
        return a.is_empty and b.is_empty

    for left, right in ((average_value(a), average_value(b)), (_number(a.average), _number(b.average))):
        if left is None or right is None:
            return False
        if abs(left - right) > tolerance + 1e-9:
            return False
    return True


class AverageResolver:
    """Prefer the remote averaging service, fall back to local aggregation.

    Remote results are returned verbatim. With ``verify`` enabled the local
    value is computed as well and disagreements are logged.
    """

    def __init__(self, remote: Optional[RemoteAveragesService] = None, *, verify: bool = False) -> None:
        self.remote = remote
        self.verify = verify

    @classmethod
    def from_settings(cls, *, verify: bool = False) -> "AverageResolver":
        return cls(RemoteAveragesService.from_settings(), verify=verify)

    def local(
        self,
        key: AverageKey,
        grades: Iterable[Grade],
        assignments: Sequence[Assignment] = (),
        *,
        weights: Optional[Mapping[str, float]] = None,
    ) -> SubjectAverage:
        in_range = filter_by_date_range(grades, key.from_date, key.to_date)
        return aggregate(
            in_range,
            key.subject_id,
            key.student_id,
            key.grading_system,
            key.subgroup_id,
            assignments,
            weights=weights,
        )

    def resolve(
        self,
        key: AverageKey,
        grades: Iterable[Grade],
        assignments: Sequence[Assignment] = (),
        *,
        weights: Optional[Mapping[str, float]] = None,
    ) -> ResolvedAverage:
        grades = list(grades)
        if self.remote is not None:
            try:
                remote_value = self.remote.fetch_subject_average(
                    student_id=key.student_id,
                    subject_id=key.subject_id,
                    subgroup_id=key.subgroup_id,
                    from_date=key.from_date,
                    to_date=key.to_date,
                )
            except AveragesServiceError as exc:
                logger.info("Remote average unavailable for %s (%s); computing locally", key, exc)
            else:
                discrepancy = False
                if self.verify:
                    local_value = self.local(key, grades, assignments, weights=weights)
                    if not averages_agree(remote_value, local_value):
                        discrepancy = True
                        logger.warning(
                            "Remote and local averages differ for %s: remote=%s local=%s",
                            key,
                            remote_value.to_dict(),
                            local_value.to_dict(),
                        )
                return ResolvedAverage(value=remote_value, source=SOURCE_REMOTE, discrepancy=discrepancy)

        return ResolvedAverage(value=self.local(key, grades, assignments, weights=weights), source=SOURCE_LOCAL)

    def resolve_class(
        self,
        class_id: RecordId,
        student_ids: Iterable[RecordId],
        subject_ids: Iterable[RecordId],
        grading_system: GradingSystem,
        grades: Iterable[Grade],
        assignments: Sequence[Assignment] = (),
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> ResolvedClassAverages:
        if self.remote is not None:
            try:
                values = self.remote.fetch_class_averages(class_id=class_id, from_date=from_date, to_date=to_date)
                return ResolvedClassAverages(values=values, source=SOURCE_REMOTE)
            except AveragesServiceError as exc:
                logger.info("Remote class averages unavailable for class %s (%s); computing locally", class_id, exc)

        values = class_averages(grades, student_ids, subject_ids, grading_system, assignments, from_date, to_date)
        return ResolvedClassAverages(values=values, source=SOURCE_LOCAL)

from datetime import date, datetime, timezone
import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from skooljournal.config.settings import settings
from skooljournal.core.aggregator import EMPTY_AVERAGE, class_averages, filter_by_date_range
from skooljournal.core.correction import SubmissionResult
from skooljournal.core.gradebook import build_gradebook
from skooljournal.core.models import Grade
from skooljournal.services.appwrite_service import (
    GradeNotFoundError,
    GradeOwnershipError,
    InvalidGradeError,
    JournalStore,
    JournalStoreError,
)
from skooljournal.services.resolver import AverageKey, AverageResolver


logging.basicConfig(level=settings.log_level)
logging.getLogger("urllib3").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


app = FastAPI(title="SkoolJournal API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class GradePayload(BaseModel):
    student_id: str
    subject_id: str
    class_id: str
    score: float = Field(allow_inf_nan=False)
    grade_type: str
    comment: Optional[str] = None
    subgroup_id: Optional[str] = None
    schedule_id: Optional[str] = None
    assignment_id: Optional[str] = None
    # Lesson date; the grade belongs to that day rather than to the submission time.
    lesson_date: Optional[datetime] = None


class GradeUpdatePayload(BaseModel):
    score: Optional[float] = Field(default=None, allow_inf_nan=False)
    grade_type: Optional[str] = None
    comment: Optional[str] = None


def get_store() -> JournalStore:
    try:
        return JournalStore.from_settings()
    except JournalStoreError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


def get_resolver() -> AverageResolver:
    return AverageResolver.from_settings()


def _required_uid(x_user_id: Optional[str]) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing x-user-id header")
    return x_user_id


def _submission_response(result: SubmissionResult) -> Dict[str, Any]:
    return {
        "grade": result.accepted.to_dict(),
        "corrected": result.corrected,
        "notice": result.notice,
    }


def _store_error(exc: JournalStoreError) -> HTTPException:
    if isinstance(exc, GradeNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, GradeOwnershipError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, InvalidGradeError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _unique(values: List[Any]) -> List[Any]:
    return list(dict.fromkeys(values))


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/student-subject-average")
def student_subject_average(
    student_id: str = Query(alias="studentId"),
    subject_id: str = Query(alias="subjectId"),
    subgroup_id: Optional[str] = Query(default=None, alias="subgroupId"),
    class_id: Optional[str] = Query(default=None, alias="classId"),
    from_date: Optional[date] = Query(default=None, alias="fromDate"),
    to_date: Optional[date] = Query(default=None, alias="toDate"),
    store: JournalStore = Depends(get_store),
) -> Dict[str, str]:
    try:
        grades = store.list_grades(student_id=student_id, subject_id=subject_id)
        owner_class = class_id or (grades[0].class_id if grades else None)
        if owner_class is None:
            return EMPTY_AVERAGE.to_dict()
        grading_system = store.get_grading_system(owner_class)
        assignments = store.list_assignments(class_id=owner_class, subject_id=subject_id)
    except JournalStoreError as exc:
        raise _store_error(exc) from exc

    # Served values are always computed locally; this endpoint is the remote side.
    key = AverageKey(
        student_id=student_id,
        subject_id=subject_id,
        grading_system=grading_system,
        subgroup_id=subgroup_id,
        from_date=from_date,
        to_date=to_date,
    )
    return AverageResolver().local(key, grades, assignments).to_dict()


@app.get("/student-subject-averages")
def student_subject_averages(
    class_id: str = Query(alias="classId"),
    from_date: Optional[date] = Query(default=None, alias="fromDate"),
    to_date: Optional[date] = Query(default=None, alias="toDate"),
    store: JournalStore = Depends(get_store),
) -> Dict[str, Dict[str, Dict[str, str]]]:
    try:
        grading_system = store.get_grading_system(class_id)
        grades = filter_by_date_range(store.list_grades(class_id=class_id), from_date, to_date)
        assignments = store.list_assignments(class_id=class_id)
    except JournalStoreError as exc:
        raise _store_error(exc) from exc

    matrix = class_averages(
        grades,
        _unique([g.student_id for g in grades]),
        _unique([g.subject_id for g in grades]),
        grading_system,
        assignments,
    )
    return {
        student_key: {subject_key: value.to_dict() for subject_key, value in row.items()}
        for student_key, row in matrix.items()
    }


@app.post("/grades", status_code=status.HTTP_201_CREATED)
def create_grade(
    payload: GradePayload,
    x_user_id: Optional[str] = Header(default=None),
    store: JournalStore = Depends(get_store),
) -> Dict[str, Any]:
    uid = _required_uid(x_user_id)
    candidate = Grade(
        id=None,
        student_id=payload.student_id,
        subject_id=payload.subject_id,
        class_id=payload.class_id,
        teacher_id=uid,
        score=payload.score,
        grade_type=payload.grade_type,
        created_at=payload.lesson_date or datetime.now(timezone.utc),
        comment=payload.comment,
        subgroup_id=payload.subgroup_id,
        schedule_id=payload.schedule_id,
        assignment_id=payload.assignment_id,
    )
    try:
        return _submission_response(store.create_grade(candidate))
    except JournalStoreError as exc:
        raise _store_error(exc) from exc


@app.put("/grades/{grade_id}")
def update_grade(
    grade_id: str,
    payload: GradeUpdatePayload,
    x_user_id: Optional[str] = Header(default=None),
    store: JournalStore = Depends(get_store),
) -> Dict[str, Any]:
    uid = _required_uid(x_user_id)
    try:
        result = store.update_grade(grade_id, teacher_id=uid, **payload.model_dump())
        return _submission_response(result)
    except JournalStoreError as exc:
        raise _store_error(exc) from exc


@app.delete("/grades/{grade_id}")
def delete_grade(
    grade_id: str,
    x_user_id: Optional[str] = Header(default=None),
    store: JournalStore = Depends(get_store),
) -> Dict[str, str]:
    uid = _required_uid(x_user_id)
    try:
        store.delete_grade(grade_id, teacher_id=uid)
        return {"status": "deleted"}
    except JournalStoreError as exc:
        raise _store_error(exc) from exc


@app.get("/classes/{class_id}/subjects/{subject_id}/gradebook")
def gradebook(
    class_id: str,
    subject_id: str,
    subgroup_id: Optional[str] = Query(default=None, alias="subgroupId"),
    from_date: Optional[date] = Query(default=None, alias="fromDate"),
    to_date: Optional[date] = Query(default=None, alias="toDate"),
    roster: Optional[List[str]] = Query(default=None, alias="studentIds"),
    store: JournalStore = Depends(get_store),
    resolver: AverageResolver = Depends(get_resolver),
) -> Dict[str, Any]:
    try:
        class_config = store.get_class(class_id)
        schedules = store.list_schedules(class_id=class_id, subject_id=subject_id, subgroup_id=subgroup_id)
        grades = store.list_grades(class_id=class_id, subject_id=subject_id)
        assignments = store.list_assignments(class_id=class_id, subject_id=subject_id, subgroup_id=subgroup_id)
    except JournalStoreError as exc:
        raise _store_error(exc) from exc

    grading_system = class_config.grading_system
    # Rows follow the roster; students graded outside it are appended.
    student_ids = _unique(list(roster or class_config.student_ids) + [g.student_id for g in grades])
    averages = {}
    sources = {}
    for student_id in student_ids:
        key = AverageKey(
            student_id=student_id,
            subject_id=subject_id,
            grading_system=grading_system,
            subgroup_id=subgroup_id,
            from_date=from_date,
            to_date=to_date,
        )
        resolved = resolver.resolve(key, grades, assignments)
        averages[student_id] = resolved.value
        sources[str(student_id)] = resolved.source

    book = build_gradebook(
        student_ids,
        schedules,
        grades,
        subject_id,
        grading_system,
        assignments,
        subgroup_id=subgroup_id,
        averages=averages,
    )
    payload = book.to_dict()
    payload["averageSources"] = sources
    return payload

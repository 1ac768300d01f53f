from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional

from appwrite.client import Client
from appwrite.exception import AppwriteException
from appwrite.id import ID
from appwrite.query import Query
from appwrite.services.databases import Databases

from skooljournal.config.settings import settings
from skooljournal.core.correction import SubmissionResult, submit_grade
from skooljournal.core.models import Assignment, ClassConfig, Grade, GradingSystem, LessonSlot, RecordId
from skooljournal.core.policy import VALID_GRADE_TYPES


logger = logging.getLogger(__name__)


class JournalStoreError(Exception):
    pass


class GradeNotFoundError(JournalStoreError):
    pass


class GradeOwnershipError(JournalStoreError):
    pass


class InvalidGradeError(JournalStoreError):
    pass


class JournalStore:
    def __init__(
        self,
        endpoint: str,
        project_id: str,
        api_key: str,
        database_id: str,
        grades_collection_id: str,
        assignments_collection_id: str,
        schedules_collection_id: str,
        classes_collection_id: str,
        databases: Optional[Databases] = None,
    ) -> None:
        if databases is None:
            if not endpoint:
                raise JournalStoreError("Missing APPWRITE_ENDPOINT in environment")
            if not project_id:
                raise JournalStoreError("Missing APPWRITE_PROJECT_ID in environment")
            if not api_key:
                raise JournalStoreError("Missing APPWRITE_API_KEY in environment")
        if not database_id:
            raise JournalStoreError("Missing APPWRITE_DATABASE_ID in environment")

        self.database_id = database_id
        self.grades_collection_id = grades_collection_id
        self.assignments_collection_id = assignments_collection_id
        self.schedules_collection_id = schedules_collection_id
        self.classes_collection_id = classes_collection_id

        if databases is None:
            client = Client()
            client.set_endpoint(endpoint.rstrip("/"))
            client.set_project(project_id)
            client.set_key(api_key)
            databases = Databases(client)

        self.db = databases

    @classmethod
    def from_settings(cls) -> "JournalStore":
        return cls(
            endpoint=settings.appwrite_endpoint,
            project_id=settings.appwrite_project_id,
            api_key=settings.appwrite_api_key,
            database_id=settings.appwrite_database_id,
            grades_collection_id=settings.appwrite_grades_collection_id,
            assignments_collection_id=settings.appwrite_assignments_collection_id,
            schedules_collection_id=settings.appwrite_schedules_collection_id,
            classes_collection_id=settings.appwrite_classes_collection_id,
        )

    @staticmethod
    def _to_iso(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()

    @staticmethod
    def _filters(**fields: Optional[RecordId]) -> List[str]:
        return [Query.equal(name, [value]) for name, value in fields.items() if value is not None]

    def _list_documents(self, collection_id: str, queries: List[str]) -> List[Dict]:
        try:
            result = self.db.list_documents(self.database_id, collection_id, queries=queries)
            return list(result.get("documents", []))
        except AppwriteException as exc:
            raise JournalStoreError(str(exc)) from exc

    def _create_document(self, collection_id: str, data: Dict, document_id: Optional[str] = None) -> Dict:
        try:
            return self.db.create_document(
                self.database_id,
                collection_id,
                document_id or ID.unique(),
                data,
            )
        except AppwriteException as exc:
            raise JournalStoreError(str(exc)) from exc

    def _get_document(self, collection_id: str, document_id: str) -> Dict:
        try:
            return self.db.get_document(self.database_id, collection_id, document_id)
        except AppwriteException as exc:
            if getattr(exc, "code", None) == 404:
                return {}
            raise JournalStoreError(str(exc)) from exc

    def _update_document(self, collection_id: str, document_id: str, data: Dict) -> Dict:
        try:
            return self.db.update_document(self.database_id, collection_id, document_id, data)
        except AppwriteException as exc:
            raise JournalStoreError(str(exc)) from exc

    def _delete_document(self, collection_id: str, document_id: str) -> None:
        try:
            self.db.delete_document(self.database_id, collection_id, document_id)
        except AppwriteException as exc:
            raise JournalStoreError(str(exc)) from exc

    def _grade_payload(self, grade: Grade) -> Dict[str, Any]:
        return {
            "student_id": grade.student_id,
            "subject_id": grade.subject_id,
            "class_id": grade.class_id,
            "teacher_id": grade.teacher_id,
            "score": grade.score,
            "grade_type": grade.grade_type,
            "comment": grade.comment,
            "subgroup_id": grade.subgroup_id,
            "schedule_id": grade.schedule_id,
            "assignment_id": grade.assignment_id,
            "created_at": self._to_iso(grade.created_at),
        }

    def get_class(self, class_id: RecordId) -> ClassConfig:
        doc = self._get_document(self.classes_collection_id, str(class_id))
        if not doc:
            raise JournalStoreError("Class not found.")
        return ClassConfig.from_dict(doc)

    def get_grading_system(self, class_id: RecordId) -> GradingSystem:
        return self.get_class(class_id).grading_system

    def list_grades(
        self,
        *,
        student_id: Optional[RecordId] = None,
        class_id: Optional[RecordId] = None,
        subject_id: Optional[RecordId] = None,
    ) -> List[Grade]:
        docs = self._list_documents(
            self.grades_collection_id,
            self._filters(student_id=student_id, class_id=class_id, subject_id=subject_id),
        )
        results: List[Grade] = []
        for doc in docs:
            try:
                results.append(Grade.from_dict(doc))
            except ValueError as exc:
                logger.warning("Skipping grade %s: %s", doc.get("$id"), exc)
        return results

    def get_grade(self, grade_id: RecordId) -> Optional[Grade]:
        doc = self._get_document(self.grades_collection_id, str(grade_id))
        if not doc:
            return None
        try:
            return Grade.from_dict(doc)
        except ValueError as exc:
            raise JournalStoreError(str(exc)) from exc

    def list_assignments(
        self,
        *,
        class_id: Optional[RecordId] = None,
        subject_id: Optional[RecordId] = None,
        subgroup_id: Optional[RecordId] = None,
        schedule_id: Optional[RecordId] = None,
    ) -> List[Assignment]:
        docs = self._list_documents(
            self.assignments_collection_id,
            self._filters(
                class_id=class_id,
                subject_id=subject_id,
                subgroup_id=subgroup_id,
                schedule_id=schedule_id,
            ),
        )

        results: List[Assignment] = []
        for doc in docs:
            try:
                results.append(Assignment.from_dict(doc))
            except ValueError as exc:
                logger.warning("Skipping assignment %s: %s", doc.get("$id"), exc)
        return results

    def list_schedules(
        self,
        *,
        class_id: Optional[RecordId] = None,
        subject_id: Optional[RecordId] = None,
        subgroup_id: Optional[RecordId] = None,
    ) -> List[LessonSlot]:
        docs = self._list_documents(
            self.schedules_collection_id,
            self._filters(class_id=class_id, subject_id=subject_id, subgroup_id=subgroup_id),
        )
        return [LessonSlot.from_dict(doc) for doc in docs]

    def _assignments_for(self, grade: Grade) -> List[Assignment]:
        if grade.schedule_id is not None:
            return self.list_assignments(schedule_id=grade.schedule_id)
        return self.list_assignments(class_id=grade.class_id, subject_id=grade.subject_id)

    @staticmethod
    def _check_grade_type(grade_type: str) -> None:
        if grade_type not in VALID_GRADE_TYPES:
            raise InvalidGradeError(f"Unsupported grade type: {grade_type}")

    def _submit(self, grade: Grade) -> SubmissionResult:
        grading_system = self.get_grading_system(grade.class_id)
        try:
            return submit_grade(grade, self._assignments_for(grade), grading_system)
        except ValueError as exc:
            raise InvalidGradeError(str(exc)) from exc

    def create_grade(self, candidate: Grade) -> SubmissionResult:
        self._check_grade_type(candidate.grade_type)
        result = self._submit(candidate)

        doc = self._create_document(self.grades_collection_id, self._grade_payload(result.accepted))
        logger.info("Grade %s created for student %s", doc.get("$id"), candidate.student_id)
        return SubmissionResult(accepted=Grade.from_dict(doc), corrected=result.corrected, notice=result.notice)

    def _owned_grade(self, grade_id: RecordId, teacher_id: RecordId) -> Grade:
        existing = self.get_grade(grade_id)
        if existing is None:
            raise GradeNotFoundError("Grade not found.")
        if str(existing.teacher_id) != str(teacher_id):
            raise GradeOwnershipError("Only the teacher who set a grade can change it.")
        return existing

    def update_grade(
        self,
        grade_id: RecordId,
        *,
        teacher_id: RecordId,
        score: Optional[float] = None,
        grade_type: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> SubmissionResult:
        existing = self._owned_grade(grade_id, teacher_id)
        if grade_type is not None:
            self._check_grade_type(grade_type)

        updated = Grade(
            id=existing.id,
            student_id=existing.student_id,
            subject_id=existing.subject_id,
            class_id=existing.class_id,
            teacher_id=existing.teacher_id,
            score=existing.score if score is None else score,
            grade_type=existing.grade_type if grade_type is None else grade_type,
            created_at=existing.created_at,
            comment=existing.comment if comment is None else comment,
            subgroup_id=existing.subgroup_id,
            schedule_id=existing.schedule_id,
            assignment_id=existing.assignment_id,
        )

        result = self._submit(updated)
        doc = self._update_document(
            self.grades_collection_id,
            str(grade_id),
            {
                "score": result.accepted.score,
                "grade_type": result.accepted.grade_type,
                "comment": result.accepted.comment,
            },
        )
        return SubmissionResult(accepted=Grade.from_dict(doc), corrected=result.corrected, notice=result.notice)

    def delete_grade(self, grade_id: RecordId, *, teacher_id: RecordId) -> None:
        self._owned_grade(grade_id, teacher_id)
        self._delete_document(self.grades_collection_id, str(grade_id))
        logger.info("Grade %s deleted by teacher %s", grade_id, teacher_id)

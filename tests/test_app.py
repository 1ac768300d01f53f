import unittest
from datetime import date

from fastapi.testclient import TestClient

from builders import make_assignment, make_grade, make_slot

from skooljournal.app import app, get_resolver, get_store
from skooljournal.core.aggregator import SubjectAverage, aggregate
from skooljournal.core.correction import submit_grade
from skooljournal.core.models import ClassConfig, GradingSystem
from skooljournal.services.appwrite_service import GradeNotFoundError, GradeOwnershipError
from skooljournal.services.resolver import AverageResolver, averages_agree


class FakeStore:
    def __init__(self, grading_system):
        self.grading_system = grading_system
        self.assignments = [
            make_assignment("A1", "S1", 5, subject_id="math"),
            make_assignment("A2", "S2", 10, subject_id="math"),
        ]
        self.schedules = [
            make_slot("S2", date(2024, 3, 11), subject_id="math"),
            make_slot("S1", date(2024, 3, 4), subject_id="math"),
        ]
        self.grades = [
            make_grade("g1", 4, student_id="st1", subject_id="math", class_id="c1", teacher_id="t1",
                       schedule_id="S1", assignment_id="A1", day=date(2024, 3, 4)),
            make_grade("g2", 9, student_id="st1", subject_id="math", class_id="c1", teacher_id="t1",
                       schedule_id="S2", assignment_id="A2", day=date(2024, 3, 11)),
            make_grade("g3", 3, student_id="st2", subject_id="math", class_id="c1", teacher_id="t1",
                       schedule_id="S1", assignment_id="A1", day=date(2024, 3, 4)),
        ]
        self.roster = ()
        self.deleted = []

    def get_class(self, class_id):
        return ClassConfig(id=class_id, grading_system=self.grading_system, student_ids=self.roster)

    def get_grading_system(self, class_id):
        return self.grading_system

    def list_grades(self, *, student_id=None, class_id=None, subject_id=None):
        return [
            g
            for g in self.grades
            if (student_id is None or g.student_id == student_id)
            and (class_id is None or g.class_id == class_id)
            and (subject_id is None or g.subject_id == subject_id)
        ]

    def list_assignments(self, **filters):
        return list(self.assignments)

    def list_schedules(self, **filters):
        return list(self.schedules)

    def create_grade(self, candidate):
        result = submit_grade(candidate, self.assignments, self.grading_system)
        return result

    def _owned(self, grade_id, teacher_id):
        for grade in self.grades:
            if grade.id == grade_id:
                if grade.teacher_id != teacher_id:
                    raise GradeOwnershipError("Only the teacher who set a grade can change it.")
                return grade
        raise GradeNotFoundError("Grade not found.")

    def update_grade(self, grade_id, *, teacher_id, score=None, grade_type=None, comment=None):
        grade = self._owned(grade_id, teacher_id)
        return submit_grade(grade.with_score(score), self.assignments, self.grading_system)

    def delete_grade(self, grade_id, *, teacher_id):
        self._owned(grade_id, teacher_id)
        self.deleted.append(grade_id)


class ApiTests(unittest.TestCase):
    def setUp(self):
        self.store = FakeStore(GradingSystem.CUMULATIVE)
        app.dependency_overrides[get_store] = lambda: self.store
        app.dependency_overrides[get_resolver] = lambda: AverageResolver()
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_student_subject_average(self):
        res = self.client.get("/student-subject-average", params={"studentId": "st1", "subjectId": "math"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"average": "13.0", "percentage": "86.7%", "maxScore": "15.0"})

    def test_served_average_matches_local_aggregation(self):
        for grading_system in GradingSystem:
            self.store.grading_system = grading_system
            for student_id in ("st1", "st2"):
                res = self.client.get(
                    "/student-subject-average", params={"studentId": student_id, "subjectId": "math"}
                )
                served = SubjectAverage.from_dict(res.json())
                local = aggregate(
                    self.store.grades, "math", student_id, grading_system, assignments=self.store.assignments
                )
                self.assertTrue(averages_agree(served, local))

    def test_average_without_grades_is_empty(self):
        res = self.client.get("/student-subject-average", params={"studentId": "nobody", "subjectId": "math"})
        self.assertEqual(res.json(), {"average": "-", "percentage": "-"})

    def test_date_range_on_average(self):
        res = self.client.get(
            "/student-subject-average",
            params={"studentId": "st1", "subjectId": "math", "fromDate": "2024-03-10", "toDate": "2024-03-31"},
        )
        self.assertEqual(res.json()["percentage"], "90.0%")

    def test_class_matrix(self):
        res = self.client.get("/student-subject-averages", params={"classId": "c1"})
        body = res.json()
        self.assertEqual(body["st1"]["math"]["percentage"], "86.7%")
        self.assertEqual(body["st2"]["overall"]["percentage"], "60.0%")

    def test_create_grade_reports_correction(self):
        res = self.client.post(
            "/grades",
            headers={"x-user-id": "t1"},
            json={
                "student_id": "st2",
                "subject_id": "math",
                "class_id": "c1",
                "score": 12,
                "grade_type": "classwork",
                "schedule_id": "S2",
                "assignment_id": "A2",
                "lesson_date": "2024-03-11T00:00:00Z",
            },
        )
        self.assertEqual(res.status_code, 201)
        body = res.json()
        self.assertTrue(body["corrected"])
        self.assertEqual(body["grade"]["score"], 10)
        self.assertEqual(body["grade"]["teacherId"], "t1")
        self.assertTrue(body["grade"]["createdAt"].startswith("2024-03-11"))

    def test_create_requires_user(self):
        res = self.client.post(
            "/grades",
            json={"student_id": "st2", "subject_id": "math", "class_id": "c1", "score": 3, "grade_type": "classwork"},
        )
        self.assertEqual(res.status_code, 401)

    def test_update_and_delete_ownership(self):
        res = self.client.put("/grades/g1", headers={"x-user-id": "t9"}, json={"score": 3})
        self.assertEqual(res.status_code, 403)
        res = self.client.delete("/grades/missing", headers={"x-user-id": "t1"})
        self.assertEqual(res.status_code, 404)
        res = self.client.delete("/grades/g1", headers={"x-user-id": "t1"})
        self.assertEqual(res.json(), {"status": "deleted"})
        self.assertEqual(self.store.deleted, ["g1"])

    def test_update_grade(self):
        res = self.client.put("/grades/g1", headers={"x-user-id": "t1"}, json={"score": 8})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["grade"]["score"], 5)

    def test_gradebook(self):
        res = self.client.get("/classes/c1/subjects/math/gradebook")
        body = res.json()
        self.assertEqual([slot["id"] for slot in body["slots"]], ["S1", "S2"])
        self.assertEqual(body["rows"][0]["average"]["percentage"], "86.7%")
        self.assertEqual(body["averageSources"], {"st1": "local", "st2": "local"})

    def test_gradebook_lists_ungraded_students_from_roster(self):
        self.store.roster = ("st3", "st1")
        body = self.client.get("/classes/c1/subjects/math/gradebook").json()

        self.assertEqual([row["studentId"] for row in body["rows"]], ["st3", "st1", "st2"])
        fresh = body["rows"][0]
        self.assertEqual(fresh["average"], {"average": "-", "percentage": "-"})
        self.assertIsNone(fresh["band"])
        self.assertTrue(all(cell["canGrade"] for cell in fresh["cells"]))

    def test_gradebook_of_fresh_class_offers_first_grade(self):
        self.store.grades = []
        res = self.client.get("/classes/c1/subjects/math/gradebook", params={"studentIds": ["st7", "st8"]})
        rows = res.json()["rows"]
        self.assertEqual([row["studentId"] for row in rows], ["st7", "st8"])
        self.assertTrue(rows[0]["cells"][0]["canGrade"])

    def test_non_finite_score_is_rejected(self):
        res = self.client.post(
            "/grades",
            headers={"x-user-id": "t1"},
            json={
                "student_id": "st2",
                "subject_id": "math",
                "class_id": "c1",
                "score": "NaN",
                "grade_type": "classwork",
            },
        )
        self.assertEqual(res.status_code, 422)
        res = self.client.put("/grades/g1", headers={"x-user-id": "t1"}, json={"score": "inf"})
        self.assertEqual(res.status_code, 422)


if __name__ == "__main__":
    unittest.main()

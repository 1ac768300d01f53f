import unittest
from datetime import date

from builders import make_assignment, make_grade, make_slot

from skooljournal.core.aggregator import SubjectAverage
from skooljournal.core.gradebook import build_gradebook
from skooljournal.core.models import GradingSystem, LessonStatus


class GradebookTests(unittest.TestCase):
    def setUp(self):
        self.schedules = [
            make_slot("S2", date(2024, 3, 5)),
            make_slot("S1", date(2024, 3, 4)),
            make_slot("S3", date(2024, 3, 6), status=LessonStatus.NOT_CONDUCTED),
        ]
        self.assignments = [make_assignment("A1", "S1", 5), make_assignment("A2", "S2", 10)]
        self.grades = [
            make_grade(1, 4, schedule_id="S1", assignment_id="A1"),
            make_grade(2, 9, schedule_id="S2", assignment_id="A2"),
            make_grade(3, 3, student_id=2, schedule_id="S1", assignment_id="A1"),
        ]

    def test_cumulative_layout(self):
        book = build_gradebook([1, 2], self.schedules, self.grades, 10, GradingSystem.CUMULATIVE, self.assignments)

        self.assertEqual([slot.id for slot in book.slots], ["S1", "S2", "S3"])
        first = book.rows[0]
        self.assertEqual(first.average.percentage, "86.7%")
        self.assertEqual([shown.text for shown in first.cells[0].display], ["4/5"])
        self.assertFalse(first.cells[0].can_grade)
        self.assertFalse(first.cells[2].can_grade)

        second = book.rows[1]
        self.assertEqual(second.cells[1].grades, ())
        self.assertTrue(second.cells[1].can_grade)
        self.assertEqual(second.average.percentage, "60.0%")

    def test_supplied_averages_take_precedence(self):
        remote = {1: SubjectAverage(average="12.0", percentage="80.0%", max_score="15.0")}
        book = build_gradebook(
            [1, 2], self.schedules, self.grades, 10, GradingSystem.CUMULATIVE, self.assignments, averages=remote
        )
        self.assertEqual(book.rows[0].average.percentage, "80.0%")
        self.assertEqual(book.rows[1].average.percentage, "60.0%")

    def test_serialises(self):
        book = build_gradebook([1], self.schedules, self.grades, 10, GradingSystem.FIVE_POINT, self.assignments)
        payload = book.to_dict()
        self.assertEqual(payload["gradingSystem"], "five_point")
        self.assertEqual(payload["slots"][0]["date"], "2024-03-04")
        self.assertEqual(payload["rows"][0]["cells"][0]["grades"][0]["text"], "4")
        self.assertTrue(payload["rows"][0]["cells"][0]["canGrade"])

    def test_labels_and_bands(self):
        book = build_gradebook([1, 2], self.schedules, self.grades, 10, GradingSystem.CUMULATIVE, self.assignments)
        payload = book.to_dict()

        assignment = payload["slots"][0]["assignments"][0]
        self.assertEqual((assignment["label"], assignment["shortLabel"]), ("Work in class", "Work"))

        first = payload["rows"][0]
        self.assertEqual(first["band"], "good")
        shown = first["cells"][0]["grades"][0]
        self.assertEqual((shown["gradeTypeLabel"], shown["band"]), ("Classwork", "good"))
        self.assertEqual(payload["rows"][1]["band"], "satisfactory")

        five_point = build_gradebook([2], self.schedules, self.grades, 10, GradingSystem.FIVE_POINT).to_dict()
        self.assertEqual(five_point["rows"][0]["cells"][0]["grades"][0]["band"], "satisfactory")


if __name__ == "__main__":
    unittest.main()

import unittest
from datetime import date
from unittest.mock import MagicMock

from builders import make_assignment, make_grade

from skooljournal.core.aggregator import SubjectAverage
from skooljournal.core.models import GradingSystem
from skooljournal.services.averages_service import AveragesServiceError, RemoteAveragesService
from skooljournal.services.resolver import (
    SOURCE_LOCAL,
    SOURCE_REMOTE,
    AverageKey,
    AverageResolver,
    averages_agree,
)


class ResolverTests(unittest.TestCase):
    def setUp(self):
        self.assignments = [make_assignment("A1", "S1", 5), make_assignment("A2", "S2", 10)]
        self.grades = [
            make_grade(1, 4, schedule_id="S1", assignment_id="A1", day=date(2024, 3, 4)),
            make_grade(2, 9, schedule_id="S2", assignment_id="A2", day=date(2024, 3, 11)),
        ]
        self.key = AverageKey(student_id=1, subject_id=10, grading_system=GradingSystem.CUMULATIVE)
        self.remote = MagicMock(spec=RemoteAveragesService)

    def test_remote_result_is_used_verbatim(self):
        self.remote.fetch_subject_average.return_value = SubjectAverage("13.0", "86.7%", "15.0")
        resolved = AverageResolver(self.remote).resolve(self.key, self.grades, self.assignments)
        self.assertEqual(resolved.source, SOURCE_REMOTE)
        self.assertEqual(resolved.value.percentage, "86.7%")
        self.assertFalse(resolved.discrepancy)

    def test_falls_back_when_remote_fails(self):
        self.remote.fetch_subject_average.side_effect = AveragesServiceError("AVERAGES_UNAVAILABLE")
        resolved = AverageResolver(self.remote).resolve(self.key, self.grades, self.assignments)
        self.assertEqual(resolved.source, SOURCE_LOCAL)
        self.assertEqual(resolved.value.percentage, "86.7%")

    def test_without_remote_computes_locally(self):
        resolved = AverageResolver().resolve(self.key, self.grades, self.assignments)
        self.assertEqual(resolved.source, SOURCE_LOCAL)
        self.assertEqual(resolved.value.average, "13.0")

    def test_local_respects_date_range(self):
        key = AverageKey(
            student_id=1,
            subject_id=10,
            grading_system=GradingSystem.CUMULATIVE,
            from_date=date(2024, 3, 1),
            to_date=date(2024, 3, 7),
        )
        resolved = AverageResolver().resolve(key, self.grades, self.assignments)
        self.assertEqual(resolved.value.percentage, "80.0%")

    def test_verify_flags_discrepancy(self):
        self.remote.fetch_subject_average.return_value = SubjectAverage("10.0", "66.7%", "15.0")
        resolver = AverageResolver(self.remote, verify=True)
        with self.assertLogs("skooljournal.services.resolver", level="WARNING"):
            resolved = resolver.resolve(self.key, self.grades, self.assignments)
        self.assertTrue(resolved.discrepancy)
        self.assertEqual(resolved.source, SOURCE_REMOTE)
        self.assertEqual(resolved.value.percentage, "66.7%")

    def test_resolve_class_prefers_remote(self):
        remote_values = {"1": {"overall": SubjectAverage("13.0", "86.7%", "15.0")}}
        self.remote.fetch_class_averages.return_value = remote_values
        resolved = AverageResolver(self.remote).resolve_class(
            100, [1], [10], GradingSystem.CUMULATIVE, self.grades, self.assignments
        )
        self.assertEqual(resolved.source, SOURCE_REMOTE)
        self.assertIs(resolved.values, remote_values)

    def test_resolve_class_falls_back(self):
        self.remote.fetch_class_averages.side_effect = AveragesServiceError("AVERAGES_MALFORMED")
        resolved = AverageResolver(self.remote).resolve_class(
            100, [1], [10], GradingSystem.CUMULATIVE, self.grades, self.assignments
        )
        self.assertEqual(resolved.source, SOURCE_LOCAL)
        self.assertEqual(resolved.values["1"]["10"].percentage, "86.7%")


class AgreementTests(unittest.TestCase):
    def test_within_tolerance(self):
        self.assertTrue(averages_agree(SubjectAverage("4.0", "80.0%"), SubjectAverage("4.05", "81.0%"), 1.0))
        self.assertTrue(averages_agree(SubjectAverage("4.0", "80.0%"), SubjectAverage("4.0", "80.1%")))
        self.assertFalse(averages_agree(SubjectAverage("4.0", "80.0%"), SubjectAverage("4.2", "84.0%")))

    def test_sentinels(self):
        empty = SubjectAverage("-", "-")
        self.assertTrue(averages_agree(empty, SubjectAverage("-", "-")))
        self.assertFalse(averages_agree(empty, SubjectAverage("0.0", "0.0%")))


if __name__ == "__main__":
    unittest.main()

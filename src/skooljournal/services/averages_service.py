from datetime import date
from typing import Any, Dict, Optional
import logging

import requests
from requests import RequestException

from skooljournal.config.settings import settings
from skooljournal.core.aggregator import SubjectAverage
from skooljournal.core.models import RecordId


logger = logging.getLogger(__name__)


class AveragesServiceError(Exception):
    pass


def _date_param(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


class RemoteAveragesService:
    SUBJECT_AVERAGE_PATH = "/student-subject-average"
    CLASS_AVERAGES_PATH = "/student-subject-averages"

    def __init__(self, endpoint: str, api_key: str = "", timeout: float = 5.0) -> None:
        if not endpoint:
            raise AveragesServiceError("Missing AVERAGES_ENDPOINT in environment")
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> Optional["RemoteAveragesService"]:
        if not settings.averages_endpoint:
            return None
        return cls(settings.averages_endpoint, settings.averages_api_key, settings.averages_timeout)

    def fetch_subject_average(
        self,
        *,
        student_id: RecordId,
        subject_id: RecordId,
        subgroup_id: Optional[RecordId] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> SubjectAverage:
        params: Dict[str, Any] = {
            "studentId": student_id,
            "subjectId": subject_id,
            "fromDate": _date_param(from_date),
            "toDate": _date_param(to_date),
        }
        if subgroup_id is not None:
            params["subgroupId"] = subgroup_id

        data = self._get(self.SUBJECT_AVERAGE_PATH, params)
        try:
            return SubjectAverage.from_dict(data)
        except ValueError as exc:
            raise AveragesServiceError("AVERAGES_MALFORMED") from exc

    def fetch_class_averages(
        self,
        *,
        class_id: RecordId,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> Dict[str, Dict[str, SubjectAverage]]:
        data = self._get(
            self.CLASS_AVERAGES_PATH,
            {"classId": class_id, "fromDate": _date_param(from_date), "toDate": _date_param(to_date)},
        )
        if not isinstance(data, dict):
            raise AveragesServiceError("AVERAGES_MALFORMED")

        results: Dict[str, Dict[str, SubjectAverage]] = {}
        try:
            for student_key, row in data.items():
                if not isinstance(row, dict):
                    raise ValueError(f"row for student {student_key} must be an object")
                results[str(student_key)] = {
                    str(subject_key): SubjectAverage.from_dict(value) for subject_key, value in row.items()
                }
        except ValueError as exc:
            raise AveragesServiceError("AVERAGES_MALFORMED") from exc
        return results

    def _get(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.endpoint}{path}"
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            res = requests.get(url, headers=headers, params=params, timeout=self.timeout)
        except RequestException as exc:
            raise AveragesServiceError("AVERAGES_UNAVAILABLE") from exc

        if res.status_code >= 400:
            logger.info("Averaging service answered %s for %s", res.status_code, path)
            raise AveragesServiceError("AVERAGES_UNAVAILABLE")

        try:
            return res.json()
        except ValueError as exc:
            raise AveragesServiceError("AVERAGES_MALFORMED") from exc

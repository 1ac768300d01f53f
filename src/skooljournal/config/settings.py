from dataclasses import dataclass
import os
from dotenv import load_dotenv


load_dotenv()


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    appwrite_endpoint: str = os.getenv("APPWRITE_ENDPOINT", "")
    appwrite_project_id: str = os.getenv("APPWRITE_PROJECT_ID", "")
    appwrite_api_key: str = os.getenv("APPWRITE_API_KEY") or os.getenv("APPWRITE_FUNCTION_API_KEY", "")
    appwrite_database_id: str = os.getenv("APPWRITE_DATABASE_ID", "")

    appwrite_grades_collection_id: str = os.getenv("APPWRITE_GRADES_COLLECTION_ID", "grades")
    appwrite_assignments_collection_id: str = os.getenv("APPWRITE_ASSIGNMENTS_COLLECTION_ID", "assignments")
    appwrite_schedules_collection_id: str = os.getenv("APPWRITE_SCHEDULES_COLLECTION_ID", "schedules")
    appwrite_classes_collection_id: str = os.getenv("APPWRITE_CLASSES_COLLECTION_ID", "classes")

    # Empty endpoint disables the remote averaging service.
    averages_endpoint: str = os.getenv("AVERAGES_ENDPOINT", "")
    averages_api_key: str = os.getenv("AVERAGES_API_KEY", "")
    averages_timeout: float = _float_env("AVERAGES_TIMEOUT", 5.0)

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    cors_allowed_origins: tuple[str, ...] = _split_csv(
        os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    )


settings = Settings()

from dataclasses import dataclass
import os
from dotenv import load_dotenv


load_dotenv()


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    appwrite_endpoint: str = os.getenv("APPWRITE_ENDPOINT", "")
    appwrite_project_id: str = os.getenv("APPWRITE_PROJECT_ID", "")
    appwrite_api_key: str = os.getenv("APPWRITE_API_KEY") or os.getenv("APPWRITE_FUNCTION_API_KEY", "")
    appwrite_database_id: str = os.getenv("APPWRITE_DATABASE_ID", "")

    appwrite_courses_collection_id: str = os.getenv("APPWRITE_COURSES_COLLECTION_ID", "courses")
    appwrite_grades_collection_id: str = os.getenv("APPWRITE_GRADES_COLLECTION_ID", "grades")
    appwrite_attendance_collection_id: str = os.getenv("APPWRITE_ATTENDANCE_COLLECTION_ID", "attendance")
    appwrite_announcements_collection_id: str = os.getenv(
        "APPWRITE_ANNOUNCEMENTS_COLLECTION_ID", "announcements"
    )

    cors_allowed_origins: tuple[str, ...] = _split_csv(
        os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    announcement_queue_size: int = int(os.getenv("ANNOUNCEMENT_QUEUE_SIZE", "100"))


settings = Settings()

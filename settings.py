"""
Settings
========

Environment driven configuration. Values come from `QUIZ_DASH_*` variables or a
local `.env` file.
"""

from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="QUIZ_DASH_", env_file=".env", extra="ignore")

    backend_url: str = "http://localhost:54321"
    backend_api_key: str = ""
    students_table: str = "students"
    submissions_table: str = "quiz_results"
    quizzes_table: str = "quizzes"
    request_timeout: float = 60.0

    trend_window: int = 10
    trend_threshold: float = 5.0
    # "legacy" keeps the dashboard's historic up/down labels, "chronological" flips them
    trend_convention: Literal["legacy", "chronological"] = "legacy"

    # Expected submitters per quiz when the catalogue does not say
    default_completion_baseline: Optional[int] = None

    refresh_interval_minutes: float = 5.0
    debounce_seconds: float = 2.0
    log_level: str = "INFO"


settings = Settings()

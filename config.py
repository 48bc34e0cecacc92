import os
from functools import lru_cache
from pathlib import Path

WEEK_START_DAYS = {"monday": 0, "sunday": 6}


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        week_start: str,
        csrf_secret: str,
        session_secret: str,
        identity_secret: str,
        session_max_age_hours: int,
        log_level: str,
    ) -> None:
        if week_start not in WEEK_START_DAYS:
            raise ValueError(f"Unsupported week start: {week_start}")
        self.database_url = database_url
        self.timezone = timezone
        self.week_start = week_start
        self.csrf_secret = csrf_secret
        self.session_secret = session_secret
        self.identity_secret = identity_secret
        self.session_max_age_hours = session_max_age_hours
        self.log_level = log_level

    @property
    def week_start_day(self) -> int:
        return WEEK_START_DAYS[self.week_start]


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    return Settings(
        database_url=os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}"),
        timezone=os.getenv("BUDGET_TIMEZONE", "America/New_York"),
        week_start=os.getenv("BUDGET_WEEK_START", "sunday").strip().lower(),
        csrf_secret=os.getenv(
            "BUDGET_CSRF_SECRET",
            "5d0c1f3b8e0a4a7c9b2e6f1d3c8a7b4e9f0d2c6b1a5e8f3d7c0b9a4e6f2d1c8b",
        ),
        session_secret=os.getenv(
            "BUDGET_SESSION_SECRET",
            "a81f6c2e9d4b07f3e5c1a8d6b2f9e0c47d3a5b8e1f6c9d2a0b7e4f1c8d5a2b9e",
        ),
        identity_secret=os.getenv(
            "BUDGET_IDENTITY_SECRET",
            "c3e9a1f7b5d2086e4a9c1f3b7d5e2a8c0f6b4d9e1a3c7f5b2d8e0a6c4f9b1d3e",
        ),
        session_max_age_hours=int(os.getenv("BUDGET_SESSION_MAX_AGE_HOURS", "24")),
        log_level=os.getenv("BUDGET_LOG_LEVEL", "INFO").upper(),
    )

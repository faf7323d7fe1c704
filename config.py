import os
from functools import lru_cache


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_secs: int,
        password_hash_method: str,
        seed_demo: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_secs = session_max_age_secs
        self.password_hash_method = password_hash_method
        self.seed_demo = seed_demo
        self.log_level = log_level


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSE_TRACKER_DATABASE_URL", "sqlite://")
    timezone = os.getenv("EXPENSE_TRACKER_TIMEZONE", "UTC")
    session_secret = os.getenv(
        "EXPENSE_TRACKER_SESSION_SECRET",
        "5d1c0b7e2f9a4c83b6e0d27f41a9c3e85b7f02d6a1e94c3b8f60d2a7e19c4b50",
    )
    session_max_age_secs = int(
        os.getenv("EXPENSE_TRACKER_SESSION_MAX_AGE_SECS", str(24 * 60 * 60))
    )
    password_hash_method = os.getenv("EXPENSE_TRACKER_PASSWORD_HASH_METHOD", "scrypt")
    seed_demo = _env_flag("EXPENSE_TRACKER_SEED_DEMO")
    log_level = os.getenv("EXPENSE_TRACKER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_secs=session_max_age_secs,
        password_hash_method=password_hash_method,
        seed_demo=seed_demo,
        log_level=log_level,
    )

import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Storage
    data_dir: str = os.getenv("LIBRARY_DATA_DIR", "library_data")
    data_file: str = os.getenv("LIBRARY_DATA_FILE", "library_data.json")
    backup_dir: str = os.getenv("LIBRARY_BACKUP_DIR", "backups")
    max_backups: int = int(os.getenv("LIBRARY_MAX_BACKUPS", "5"))
    auto_backup: bool = _env_bool("LIBRARY_AUTO_BACKUP", "True")

    # Circulation rules
    loan_days: int = int(os.getenv("LIBRARY_LOAN_DAYS", "14"))
    renewal_days: int = int(os.getenv("LIBRARY_RENEWAL_DAYS", "7"))

    # Due-date alerts
    alert_days_before: int = int(os.getenv("LIBRARY_ALERT_DAYS_BEFORE", "3"))
    alert_interval_seconds: float = float(os.getenv("LIBRARY_ALERT_INTERVAL", "3600"))  # hourly

    # Application
    app_name: str = os.getenv("APP_NAME", "Library Circulation")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()

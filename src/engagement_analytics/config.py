"""Settings read from the environment (and a local .env file)."""
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _path_env(name: str, default: str | None = None) -> Path | None:
    raw = os.getenv(name, default)
    return Path(raw) if raw else None


class Settings(BaseModel):
    """Run configuration for the analytics pipeline."""

    # Helpdesk
    jira_domain: str | None = None
    jira_email: str | None = None
    jira_api_token: str | None = None
    jira_jql: str = "project = LL1HD AND created >= -30d ORDER BY created DESC"
    jira_max_results: int = 200

    # CRM
    pipedrive_api_key: str | None = None
    pipedrive_domain: str = "landiq"

    # Usage feeds
    usage_csv_path: Path | None = None
    usage_surface: str = "landiq"
    snapshot_csv_path: Path | None = None
    snapshot_surface: str = "giraffe"

    # Run
    data_dir: Path = Path("data")
    activity_window_months: int = 6
    max_retries: int = 3
    request_timeout: float = 30.0
    log_level: str = "INFO"

    @property
    def jira_configured(self) -> bool:
        return bool(self.jira_domain and self.jira_email and self.jira_api_token)

    @property
    def pipedrive_configured(self) -> bool:
        return bool(self.pipedrive_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            jira_domain=os.getenv("JIRA_DOMAIN"),
            jira_email=os.getenv("JIRA_EMAIL"),
            jira_api_token=os.getenv("JIRA_API_TOKEN"),
            jira_jql=os.getenv("JIRA_JQL", cls.model_fields["jira_jql"].default),
            jira_max_results=_int_env("JIRA_MAX_RESULTS", 200),
            pipedrive_api_key=os.getenv("PIPEDRIVE_API_KEY"),
            pipedrive_domain=os.getenv("PIPEDRIVE_COMPANY_DOMAIN", "landiq"),
            usage_csv_path=_path_env("USAGE_CSV_PATH"),
            usage_surface=os.getenv("USAGE_SURFACE", "landiq"),
            snapshot_csv_path=_path_env("SNAPSHOT_CSV_PATH"),
            snapshot_surface=os.getenv("SNAPSHOT_SURFACE", "giraffe"),
            data_dir=_path_env("DATA_DIR", "data"),
            activity_window_months=_int_env("ACTIVITY_WINDOW_MONTHS", 6),
            max_retries=_int_env("MAX_RETRIES", 3),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

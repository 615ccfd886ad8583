"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./issuemirror.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Tracker backend: "github" or "gitlab"
    tracker_backend: str = "github"
    # Applies to every tracker call. A timeout surfaces as a NETWORK error (no retry).
    tracker_timeout_seconds: float = 30.0

    # GitHub
    github_api_url: str = "https://api.github.com"
    github_token: str | None = None
    github_owner: str | None = None
    github_repo: str | None = None

    # GitLab
    gitlab_url: str = "https://gitlab.com"
    gitlab_token: str | None = None
    gitlab_project_id: str | None = None

    # Managed labels. Everything outside this set is preserved verbatim on update.
    system_label: str = "afu9"
    schema_version_label: str = "v0.7"
    # Any existing label matching this pattern is treated as a (possibly stale)
    # schema-version marker and replaced by `schema_version_label`.
    schema_version_label_pattern: str = r"^v\d+\.\d+$"
    # Only applied on create; later state labels belong to operators/workflows.
    initial_state_label: str = "state:CREATED"
    canonical_label_prefix: str = "cid:"

    # Mirror refresh (poll the tracker for status). 0 disables the job.
    mirror_refresh_interval_minutes: int = 10

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()

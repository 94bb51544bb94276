"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./deduper.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging
    log_level: str = "INFO"

    # GitHub App
    github_api_url: str = "https://api.github.com"
    github_app_id: str = ""
    # PEM encoded private key of the GitHub App.
    github_private_key_file: str = "private-key.pem"
    # Organization the app is installed on; the installation is looked up by it.
    github_organization: str = "minecraft-dev"
    github_repository: str = "minecraft-dev/mcdev-error-report"
    github_webhook_secret: str = ""

    # Reports
    # Only issues opened by this account are tracked.
    reporter_login: str = "minecraft-dev-autoreporter"
    # Trace lines are kept only if they start with this prefix (before trimming).
    frame_prefix: str = "\tat com.demonwav.mcdev"
    placeholder_title: str = "[auto-generated] Exception in plugin"

    # Sync
    # Run a full sweep when the service starts, in addition to the daily run at UTC midnight.
    sweep_on_startup: bool = True
    sweep_workers: int = 8
    webhook_workers: int = 4

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()

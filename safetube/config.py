from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables with the
    SAFETUBE_ prefix (e.g. SAFETUBE_DATA_DIR=/custom/data).
    """

    # Database and backups live under the data directory
    DATA_DIR: Path = Path.home() / ".local" / "share" / "safetube"
    DB_FILENAME: str = "safetube.db"
    BUSY_TIMEOUT_MS: int = 30000

    # Directory holding the legacy JSON documents (videoSources.json, ...)
    CONFIG_DIR: Path = Path.home() / ".config" / "safetube"

    # Retry policy applied to every migration unit
    MIGRATION_MAX_ATTEMPTS: int = 2
    MIGRATION_BASE_DELAY_MS: int = 1000

    # Server
    HOST: str = "127.0.0.1"
    PORT: int = 8765
    LOG_LEVEL: str = "INFO"

    model_config = {"env_prefix": "SAFETUBE_"}

    @property
    def db_path(self) -> Path:
        return self.DATA_DIR / self.DB_FILENAME


settings = Settings()

"""Configuration management for the Sappho backup engine."""
import os
import tempfile
from pathlib import Path
from functools import lru_cache
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file into os.environ at startup
# Priority: $DATA_DIR/.env (Docker volume) > ./.env (local dev fallback)
_data_env = Path(os.environ.get("DATA_DIR", "./data")) / ".env"
if _data_env.exists():
    load_dotenv(_data_env, override=True)
else:
    load_dotenv(override=True)

# Resolve env_file path for Pydantic Settings
_env_file = str(_data_env) if _data_env.exists() else ".env"


class Settings(BaseSettings):
    """Application settings"""
    model_config = SettingsConfigDict(env_file=_env_file, extra="ignore")

    # API Server
    host: str = "127.0.0.1"
    port: int = 3002
    debug: bool = False
    log_level: str = "INFO"

    # Paths (can be overridden via environment variables for Docker)
    data_dir: str = "./data"  # DATA_DIR env var
    database_path: str = ""  # DATABASE_PATH env var, defaults to <data_dir>/sappho.db
    covers_dir: str = ""  # COVERS_DIR env var, defaults to <data_dir>/covers
    backups_dir: str = ""  # BACKUPS_DIR env var, defaults to <data_dir>/backups
    upload_dir: str = ""  # UPLOAD_DIR env var, defaults to <tmp>/sappho-uploads

    # Scheduled backups
    auto_backup_interval: float = 24  # hours, 0 disables
    backup_retention: int = 7
    backup_include_covers: bool = True
    backup_initial_delay: float = 60  # seconds before the first scheduled run

    # Restore uploads
    max_upload_size: int = 500 * 1024 * 1024  # 500MB

    @property
    def effective_database_path(self) -> Path:
        """Get effective database path (DATABASE_PATH or <data_dir>/sappho.db)"""
        if self.database_path:
            return Path(self.database_path)
        return Path(self.data_dir) / "sappho.db"

    @property
    def effective_covers_dir(self) -> Path:
        if self.covers_dir:
            return Path(self.covers_dir)
        return Path(self.data_dir) / "covers"

    @property
    def effective_backups_dir(self) -> Path:
        if self.backups_dir:
            return Path(self.backups_dir)
        return Path(self.data_dir) / "backups"

    @property
    def effective_upload_dir(self) -> Path:
        if self.upload_dir:
            return Path(self.upload_dir)
        return Path(tempfile.gettempdir()) / "sappho-uploads"


@lru_cache()
def get_settings() -> Settings:
    return Settings()

# specflow/config.py
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "specflow"

    # Run state and logs
    state_dir: Path = Field(default=Path(".specflow") / "state" / "dag-runs")
    # Root of the hierarchical log layout; falls back to the XDG cache when unset
    log_dir: Optional[Path] = None
    legacy_logs: bool = False

    # Scheduling
    max_parallel: int = Field(default=0, ge=0)
    feature_timeout: Optional[float] = Field(default=None, gt=0)
    pipeline_command: List[str] = Field(default_factory=lambda: ["autospec", "run", "-spti"])

    # Log streaming / watch
    poll_interval: float = Field(default=0.1, gt=0)
    watch_interval: float = Field(default=2.0, gt=0)

    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_prefix="SPECFLOW_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()

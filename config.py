# /config.py

import logging
import logging.config
import os
from functools import lru_cache
from typing import Dict, Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from data_models import InputType, SpectrogramTheme

# --- Application Config (environment driven) ---

class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BATSCOPE_", env_file=".env", extra="ignore")

    app_name: str = "BatScope - Bat Call Analysis Dashboard"
    api_base: str = "http://localhost:8000"
    request_timeout: float = 30.0
    health_interval: float = 30.0
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    download_dir: str = "downloads"


@lru_cache()
def get_config() -> AppConfig:
    return AppConfig()

# --- Per-session Analysis Options ---

class AnalysisSettings(BaseModel):
    """Options sent along with every analyze request. Purely local."""
    theme: SpectrogramTheme = SpectrogramTheme.DARK_VIRIDIS
    threshold: float = Field(0.01, ge=0.0, le=1.0)
    max_threshold: float = Field(0.5, ge=0.0, le=1.0)
    max_freq: int = Field(250, gt=0)
    input_type: InputType = InputType.AUDIO
    dark_mode: bool = True

    def form_fields(self, include_input_type: bool = False) -> Dict[str, str]:
        fields = {
            "theme": self.theme.value,
            "threshold": str(self.threshold),
            "max_threshold": str(self.max_threshold),
            "max_freq": str(self.max_freq),
        }
        if include_input_type:
            fields["input_type"] = self.input_type.value
        return fields

# --- Logging ---

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def init_logging(config: Optional[AppConfig] = None) -> None:
    """Configures the root logger: console always, rotating file when log_dir is set."""
    config = config or get_config()

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "level": config.log_level,
        },
    }
    if config.log_dir:
        os.makedirs(config.log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": os.path.join(config.log_dir, "batscope.log"),
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 3,
            "level": config.log_level,
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
        },
        "handlers": handlers,
        "root": {"handlers": list(handlers), "level": config.log_level},
        "loggers": {
            # httpx logs every request at INFO
            "httpx": {"level": "WARNING"},
        },
    })
    logging.getLogger(__name__).info("Logging initialized. Level: %s", config.log_level)

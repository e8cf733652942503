import os
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

from cexfeed.db.config.loader import AppConfig


def _as_bool(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    """Process-level settings from the environment; YAML holds everything else"""
    config_dir: str = "config"
    log_dir: str = "logs"
    log_level: str = "INFO"

    # Storage overrides, None keeps the YAML value
    db_path: Optional[str] = None
    redis_url: Optional[str] = None
    use_fakeredis: Optional[bool] = None

    @classmethod
    def from_env(cls) -> 'Settings':
        load_dotenv()

        use_fake = os.getenv("USE_FAKEREDIS")
        return cls(
            config_dir=os.getenv("CONFIG_DIR", "config"),
            log_dir=os.getenv("LOG_DIR", "logs"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            db_path=os.getenv("DB_PATH") or None,
            redis_url=os.getenv("REDIS_URL") or None,
            use_fakeredis=_as_bool(use_fake) if use_fake else None,
        )

    def load_app_config(self) -> AppConfig:
        """YAML config with the environment's storage overrides applied"""
        config = AppConfig.load(self.config_dir)

        storage = config.storage
        if self.db_path:
            storage = replace(storage, db_path=self.db_path)
        if self.redis_url:
            storage = replace(storage, redis_url=self.redis_url)
        if self.use_fakeredis is not None:
            storage = replace(storage, use_fakeredis=self.use_fakeredis)

        return replace(config, storage=storage)

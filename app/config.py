from enum import Enum
import logging
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.logging import RichHandler


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LUNCHBUDDY_")

    env: Env = Env.local
    html_dir: Path = Path("assets/html")
    db_url: str = "sqlite+aiosqlite:///lunchbuddy.db"
    log_level: str = "INFO"
    voting_threshold: int = 2
    # Seconds between board refreshes.
    poll_interval: int = 10
    session_id_length: int = 8
    strict_transitions: bool = False


def configure_logging(config: Config) -> None:
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )

"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "roomsync.db"
DEFAULT_LOG_PATH = LOGS_DIR / "roomsync.log"

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_ASSISTANT_NAME = "Assistant"


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


@dataclass
class Settings:
    """Environment-driven settings consumed by the composition root."""

    backend_url: str | None = None
    backend_key: str | None = None
    db_path: PathLike = DEFAULT_DB_PATH
    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    vector_store_id: str | None = None
    assistant_sender_id: str | None = None
    assistant_display_name: str = DEFAULT_ASSISTANT_NAME
    default_model: str = DEFAULT_MODEL
    log_level: str = "INFO"

    @property
    def uses_remote_backend(self) -> bool:
        """True when a hosted backend endpoint and key are both configured."""
        return bool(self.backend_url and self.backend_key)

    @classmethod
    def from_env(cls, env_file: PathLike | None = None) -> "Settings":
        """
        Build settings from the process environment.

        Args:
            env_file: Optional .env file. Defaults to PROJECT_ROOT/.env.
                      Values already present in the environment win.
        """
        load_dotenv(env_file or PROJECT_ROOT / ".env")

        return cls(
            backend_url=os.getenv("BACKEND_URL") or None,
            backend_key=os.getenv("BACKEND_KEY") or None,
            db_path=resolve_db_path(os.getenv("DATABASE_URL")),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            vector_store_id=os.getenv("VECTOR_STORE_ID") or None,
            assistant_sender_id=os.getenv("ASSISTANT_SENDER_ID") or None,
            assistant_display_name=os.getenv(
                "ASSISTANT_DISPLAY_NAME", DEFAULT_ASSISTANT_NAME
            ),
            default_model=os.getenv("DEFAULT_MODEL", DEFAULT_MODEL),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

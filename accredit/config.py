"""
Runtime settings for the Accredit platform.

Values come from ``ACCREDIT_*`` environment variables or a ``.env`` file;
``accredit --config`` passes a JSON file whose keys take precedence.
"""

from typing import Any, Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AccreditSettings(BaseSettings):
    # Storage
    database_type: str = Field("sqlite", pattern=r"^(sqlite|postgresql)$")
    database_path: str = "accredit.db"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "accredit"
    postgres_user: str = "accredit"
    postgres_password: str = ""

    # REST server
    rest_host: str = "0.0.0.0"
    rest_port: int = 8000

    # Shared secret the identity provider sends when syncing users; generated per run when unset
    identity_token: Optional[str] = None

    log_level: str = "INFO"

    # Workflow rules
    max_note_length: int = Field(2000, gt=0)
    allow_student_self_revocation: bool = True

    model_config = SettingsConfigDict(
        env_prefix="ACCREDIT_",
        env_file="./.env",
        env_ignore_empty=True,
        extra="ignore",
    )

    @property
    def database_config(self) -> Dict[str, Any]:
        """Keyword arguments for ``DatabaseFactory.create_database``."""
        if self.database_type == "postgresql":
            return {
                "host": self.postgres_host,
                "port": self.postgres_port,
                "database": self.postgres_db,
                "user": self.postgres_user,
                "password": self.postgres_password,
            }
        return {"database_path": self.database_path}


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> AccreditSettings:
    """Settings from the environment, with ``overrides`` (e.g. a JSON config file) on top."""
    return AccreditSettings(**(overrides or {}))

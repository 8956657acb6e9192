"""Client settings.

Values come from the process environment, optionally seeded from a ``.env``
file in the working directory (existing variables win).

Environment variables:
  POINTS_API_BASE_URL           : backend origin (default http://localhost:8080)
  POINTS_API_TIMEOUT            : per-request timeout in seconds (default 10)
  VERIFICATION_COUNTDOWN_SECONDS: resend cooldown after a code is sent (default 60)
  ENVIRONMENT                   : development / staging / production
  POINTS_TOKEN_FILE             : where the CLI keeps credentials
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_TOKEN_FILE = Path.home() / ".points_exchange" / "tokens.json"


class Settings(BaseModel):
    base_url: str = "http://localhost:8080"
    request_timeout: float = Field(10.0, gt=0)
    countdown_seconds: int = Field(60, ge=0)
    environment: str = "development"
    token_file: Path = DEFAULT_TOKEN_FILE

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def echo_verification_code(self) -> bool:
        """Development deployments show the dispatched code for diagnostics."""
        return not self.is_production


def load_settings(env_file: Optional[Path] = None) -> Settings:
    load_dotenv(dotenv_path=env_file, override=False)

    return Settings(
        base_url=os.getenv("POINTS_API_BASE_URL", "http://localhost:8080").rstrip("/"),
        request_timeout=float(os.getenv("POINTS_API_TIMEOUT", "10")),
        countdown_seconds=int(os.getenv("VERIFICATION_COUNTDOWN_SECONDS", "60")),
        environment=os.getenv("ENVIRONMENT", "development"),
        token_file=Path(os.getenv("POINTS_TOKEN_FILE", str(DEFAULT_TOKEN_FILE))).expanduser(),
    )

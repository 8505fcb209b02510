"""tagflow configuration management.

Loads configuration from environment variables with sensible defaults.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


def parse_type_codes(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``"Agitator=AG,Blower=BL"`` into a type -> code mapping."""
    codes: Dict[str, str] = {}
    if not raw:
        return codes
    for pair in raw.split(","):
        if "=" not in pair:
            continue
        equipment_type, code = pair.split("=", 1)
        if equipment_type.strip() and code.strip():
            codes[equipment_type.strip()] = code.strip()
    return codes


@dataclass
class Settings:
    """Root application configuration."""

    database_url: str = "sqlite:///./tagflow.db"
    log_level: str = "INFO"
    json_logs: bool = False

    # Identity overrides for audit entries (None = use OS user / host name)
    actor: Optional[str] = None
    source: Optional[str] = None

    # Extra equipment type -> tag code mappings
    type_codes: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> Settings:
        """Load configuration from environment variables.

        Optional (with defaults):
        - DATABASE_URL: SQLAlchemy URL (default: local SQLite file)
        - LOG_LEVEL: Logging verbosity (default: "INFO")
        - JSON_LOGS: Emit JSON log lines (default: false)
        - TAGFLOW_ACTOR / TAGFLOW_SOURCE: audit identity overrides
        - TAGFLOW_TYPE_CODES: extra "Type=CODE" pairs, comma separated
        """
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./tagflow.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            json_logs=os.getenv("JSON_LOGS", "false").lower() == "true",
            actor=os.getenv("TAGFLOW_ACTOR") or None,
            source=os.getenv("TAGFLOW_SOURCE") or None,
            type_codes=parse_type_codes(os.getenv("TAGFLOW_TYPE_CODES")),
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class AccessSettings(BaseSettings):
    """Access control engine settings"""

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = "INFO"

    # ── Decisions ────────────────────────────────────────────────
    # Non-CRUD action names (export, print, ...) pass filter_actions unless disabled
    allow_unknown_actions: bool = True
    document_actions: List[str] = [
        "create",
        "read",
        "update",
        "delete",
        "export",
        "print",
    ]
    regex_cache_size: int = 256

    # ── Audit trail ──────────────────────────────────────────────
    audit_enabled: bool = False
    audit_max_entries: int = 1000

    class Config:
        env_prefix = "DHOOL_ACCESS_"
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> AccessSettings:
    """Return the process-wide settings instance"""
    return AccessSettings()

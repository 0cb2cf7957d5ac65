"""Runtime settings for the association core.

All values come from the environment (a local .env is loaded first):
  - CRM_TENANT_ID                 tenant scope used to build collection paths
  - ASSOCIATION_CACHE_TTL_SECONDS lookup cache TTL for the enrichment resolver
  - STATUS_CACHE_TTL_SECONDS      TTL for integration-status polling
  - ASSOCIATIONS_ALLOW_DUPLICATES keep duplicate ids on append (legacy behaviour)
  - ASSOCIATION_WRITE_RETRIES     read-modify-write attempts on a stale version
  - ENRICHMENT_SCAN_LIMIT         max parent documents probed by the slow scan

Usage:
    from config import get_settings
    settings = get_settings()
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_ASSOCIATION_CACHE_TTL = 5 * 60
DEFAULT_STATUS_CACHE_TTL = 90 * 60


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    tenant_id: Optional[str]
    association_cache_ttl: float
    status_cache_ttl: float
    allow_duplicates: bool
    write_retries: int
    scan_limit: int

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            tenant_id=os.environ.get("CRM_TENANT_ID"),
            association_cache_ttl=float(
                os.environ.get("ASSOCIATION_CACHE_TTL_SECONDS", DEFAULT_ASSOCIATION_CACHE_TTL)
            ),
            status_cache_ttl=float(
                os.environ.get("STATUS_CACHE_TTL_SECONDS", DEFAULT_STATUS_CACHE_TTL)
            ),
            allow_duplicates=_env_bool("ASSOCIATIONS_ALLOW_DUPLICATES"),
            write_retries=int(os.environ.get("ASSOCIATION_WRITE_RETRIES", "3")),
            scan_limit=int(os.environ.get("ENRICHMENT_SCAN_LIMIT", "200")),
        )


def get_settings() -> Settings:
    """Read settings from the current environment."""
    return Settings.from_env()


def require_tenant_id(settings: Optional[Settings] = None) -> str:
    """Return the configured tenant id or fail loudly."""
    tenant_id = (settings or get_settings()).tenant_id
    if not tenant_id:
        raise RuntimeError(
            "CRM_TENANT_ID environment variable is not set. "
            "Copy .env.example to .env and set the tenant to operate on."
        )
    return tenant_id

"""Runtime settings, read from the environment (and ``.env`` via python-dotenv).

Environment
  CREDENTIALS=ID1=TOKEN1[,ID2=TOKEN2]*   Smarty auth-id/auth-token pairs (required)
  SMARTY_QUOTA=1000                       lookups per credential per month
  SMARTY_TIMEOUT=12                       seconds per request
  SMARTY_BASE_URL=...                     US Street API endpoint
  MAILCHECK_CONCURRENCY=10
  MAILCHECK_MAX_ATTEMPTS=3
  MAILCHECK_MAX_QUOTA_RETRIES=            default: one per alternate credential
  MAILCHECK_BACKOFF_BASE=1.0
  MAILCHECK_BACKOFF_MAX=5.0
  MAILCHECK_ERROR_BUDGET=50               protocol errors tolerated; "none" disables
  MAILCHECK_SELECTION=least_used          or round_robin
  LOG_LEVEL=INFO
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from .dispatcher import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_CONCURRENCY,
    DEFAULT_ERROR_BUDGET,
    DEFAULT_MAX_ATTEMPTS,
)
from .models import DEFAULT_QUOTA, ConfigurationError, Credential
from .pool import LEAST_USED, SELECTION_POLICIES
from .smarty import DEFAULT_TIMEOUT, SMARTY_STREET_URL

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def parse_credentials(raw: Optional[str], quota: int = DEFAULT_QUOTA) -> List[Credential]:
    """Parse ``ID1=TOKEN1,ID2=TOKEN2`` into credentials with ``quota`` lookups each."""
    if not raw or not raw.strip():
        raise ConfigurationError("`CREDENTIALS` environment variable must be set")
    credentials: List[Credential] = []
    seen = set()
    for n, pair in enumerate(raw.split(","), 1):
        pair = pair.strip()
        if not pair:
            continue
        auth_id, sep, token = pair.partition("=")
        auth_id, token = auth_id.strip(), token.strip()
        if not sep or not auth_id or not token:
            raise ConfigurationError(f"malformed credential #{n}: expected ID=TOKEN")
        if auth_id in seen:
            raise ConfigurationError(f"duplicate credential id [{auth_id}]")
        seen.add(auth_id)
        credentials.append(Credential(auth_id, token, quota_limit=quota))
    if not credentials:
        raise ConfigurationError("`CREDENTIALS` contains no ID=TOKEN pairs")
    return credentials


@dataclass
class Settings:
    credentials: List[Credential] = field(default_factory=list)
    quota: int = DEFAULT_QUOTA
    timeout: float = DEFAULT_TIMEOUT
    base_url: str = SMARTY_STREET_URL
    concurrency: int = DEFAULT_CONCURRENCY
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    max_quota_retries: Optional[int] = None
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_max: float = DEFAULT_BACKOFF_MAX
    error_budget: Optional[int] = DEFAULT_ERROR_BUDGET
    selection: str = LEAST_USED
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "Settings":
        """Build settings from ``environ`` (defaults to ``os.environ``)."""
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        errors: List[str] = []

        def _num(name, default, kind):
            value = environ.get(name)
            if value is None or value.strip() == "":
                return default
            try:
                return kind(value)
            except ValueError:
                errors.append(f"{name} must be a {kind.__name__}, got {value!r}")
                return default

        s = cls()
        s.quota = _num("SMARTY_QUOTA", s.quota, int)
        s.timeout = _num("SMARTY_TIMEOUT", s.timeout, float)
        s.base_url = environ.get("SMARTY_BASE_URL") or s.base_url
        s.concurrency = _num("MAILCHECK_CONCURRENCY", s.concurrency, int)
        s.max_attempts = _num("MAILCHECK_MAX_ATTEMPTS", s.max_attempts, int)
        s.max_quota_retries = _num("MAILCHECK_MAX_QUOTA_RETRIES", s.max_quota_retries, int)
        s.backoff_base = _num("MAILCHECK_BACKOFF_BASE", s.backoff_base, float)
        s.backoff_max = _num("MAILCHECK_BACKOFF_MAX", s.backoff_max, float)
        budget = (environ.get("MAILCHECK_ERROR_BUDGET") or "").strip().lower()
        if budget in ("none", "off"):
            s.error_budget = None
        else:
            s.error_budget = _num("MAILCHECK_ERROR_BUDGET", s.error_budget, int)
        s.selection = (environ.get("MAILCHECK_SELECTION") or s.selection).strip().lower()
        s.log_level = (environ.get("LOG_LEVEL") or s.log_level).strip().upper()

        try:
            s.credentials = parse_credentials(environ.get("CREDENTIALS"), s.quota)
        except ConfigurationError as e:
            errors.append(str(e))

        if errors:
            raise ConfigurationError("; ".join(errors))
        s.validate()
        return s

    def validate(self) -> None:
        """Raise ConfigurationError listing every invalid setting."""
        errors = []
        if not self.credentials:
            errors.append("at least one credential is required")
        if self.quota <= 0:
            errors.append("SMARTY_QUOTA must be positive")
        if self.timeout <= 0:
            errors.append("SMARTY_TIMEOUT must be positive")
        if self.concurrency < 1:
            errors.append("MAILCHECK_CONCURRENCY must be at least 1")
        if self.max_attempts < 1:
            errors.append("MAILCHECK_MAX_ATTEMPTS must be at least 1")
        if self.max_quota_retries is not None and self.max_quota_retries < 0:
            errors.append("MAILCHECK_MAX_QUOTA_RETRIES must be non-negative")
        if self.backoff_base < 0 or self.backoff_max < 0:
            errors.append("backoff delays must be non-negative")
        if self.error_budget is not None and self.error_budget < 0:
            errors.append("MAILCHECK_ERROR_BUDGET must be non-negative")
        if self.selection not in SELECTION_POLICIES:
            errors.append(f"MAILCHECK_SELECTION must be one of {', '.join(SELECTION_POLICIES)}")
        if self.log_level not in LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")
        logger.debug(
            "configuration ok: %d credentials, concurrency %d", len(self.credentials), self.concurrency
        )

"""Runtime settings resolved from ``VOTELEDGER_*`` environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal, Optional, TypeVar


logger = logging.getLogger(__name__)

# Fixed for the whole system; not configurable per deployment.
CREDIT_BUDGET = 100

_DB_PATH_ENV = "VOTELEDGER_DB_PATH"
_BACKEND_ENV = "VOTELEDGER_BACKEND"
_REST_URL_ENV = "VOTELEDGER_REST_URL"
_REST_KEY_ENV = "VOTELEDGER_REST_KEY"
_LOG_LIMIT_ENV = "VOTELEDGER_LOG_LIMIT"
_TIMEOUT_ENV = "VOTELEDGER_TIMEOUT"

_DEFAULT_DB_PATH = Path("voteledger.sqlite")
_LOG_LIMIT_DEFAULT = 50
_TIMEOUT_DEFAULT = 10.0


@dataclass(frozen=True)
class LedgerSettings:
    backend: Literal["sqlite", "rest"] = "sqlite"
    db_path: Path | str = _DEFAULT_DB_PATH
    rest_url: Optional[str] = None
    rest_key: Optional[str] = None
    log_limit: int = _LOG_LIMIT_DEFAULT
    timeout: float = _TIMEOUT_DEFAULT


N = TypeVar("N", int, float)


def _env_number(name: str, default: N, parse: Callable[[str], N], *, minimum: N) -> N:
    """Parse a numeric override; blank or malformed values keep ``default``."""

    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = parse(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a valid %s", name, raw, parse.__name__)
        return default
    if value < minimum:
        logger.warning("Raising %s from %s to %s", name, value, minimum)
        return minimum
    return value


def load_settings() -> LedgerSettings:
    """Build settings from the environment, falling back to defaults."""

    backend = os.getenv(_BACKEND_ENV, "sqlite").strip().lower()
    if backend not in {"sqlite", "rest"}:
        logger.warning("Unknown backend %s; using sqlite", backend)
        backend = "sqlite"

    db_path: Path | str = _DEFAULT_DB_PATH
    env_db = os.getenv(_DB_PATH_ENV)
    if env_db:
        # sqlite URIs are passed through untouched
        db_path = env_db if env_db.startswith("file:") else Path(env_db)

    rest_url = os.getenv(_REST_URL_ENV) or None
    if backend == "rest" and not rest_url:
        raise ValueError(f"{_REST_URL_ENV} is required when {_BACKEND_ENV}=rest")

    return LedgerSettings(
        backend=backend,  # type: ignore[arg-type]
        db_path=db_path,
        rest_url=rest_url,
        rest_key=os.getenv(_REST_KEY_ENV) or None,
        log_limit=_env_number(_LOG_LIMIT_ENV, _LOG_LIMIT_DEFAULT, int, minimum=1),
        timeout=_env_number(_TIMEOUT_ENV, _TIMEOUT_DEFAULT, float, minimum=0.1),
    )

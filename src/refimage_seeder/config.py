import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, TypeVar

from dotenv import dotenv_values

from .logging import get_logger

log = get_logger("config")

T = TypeVar("T")


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running the CLI from subdirectories (e.g., `src/`) still find
    repository-level files like `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Return key/value pairs from the nearest .env; never mutates os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    try:
        values = dotenv_values(path)
    except OSError as e:
        log.warning(f"Failed reading .env: {e}")
        return {}
    env = {k: v.strip() for k, v in values.items() if v is not None}
    log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    return env


def _lookup(name: str, dotenv_dir: Optional[str], env: Optional[Dict[str, str]] = None) -> Optional[str]:
    v = os.environ.get(name)
    if v:
        return v.strip()
    if env is None:
        env = _read_dotenv(dotenv_dir or os.getcwd())
    v = env.get(name) or env.get(name.lower())
    return v.strip() if v else None


def load_serpapi_key(dotenv_dir: Optional[str] = None) -> Optional[str]:
    """Return the SerpAPI key from env or .env (SERPAPI_KEY)."""
    return _lookup("SERPAPI_KEY", dotenv_dir)


def load_jina_key(dotenv_dir: Optional[str] = None) -> Optional[str]:
    """Return the Jina embeddings key from env or .env (JINA_API_KEY)."""
    return _lookup("JINA_API_KEY", dotenv_dir)


@dataclass
class ValidatorLimits:
    min_bytes: int = 10_000
    max_bytes: int = 5_000_000
    min_dimension: int = 200


@dataclass
class SeederSettings:
    """Tunables shared by the queue worker and the search-driven seeder."""

    concurrency: int = 3
    batch_delay: float = 2.0
    rate_limit_cooldown: float = 65.0
    max_retries: int = 3
    stale_after: float = 600.0
    min_images_per_family: int = 15
    min_seed_candidates: int = 6
    target_per_family: int = 25
    max_families_per_run: int = 20
    search_delay: float = 0.3
    search_results: int = 30
    download_timeout: float = 15.0
    limits: ValidatorLimits = field(default_factory=ValidatorLimits)
    serpapi_key: Optional[str] = None
    jina_key: Optional[str] = None
    db_path: Optional[str] = None
    blob_dir: Optional[str] = None


def _coerce(name: str, raw: Optional[str], default: T, cast: Callable[[str], T]) -> T:
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        log.warning(f"Ignoring malformed {name}={raw!r}; using default {default!r}")
        return default


def load_settings(dotenv_dir: Optional[str] = None) -> SeederSettings:
    """Build SeederSettings from env/.env, falling back to the built-in defaults."""
    env = _read_dotenv(dotenv_dir or os.getcwd())
    d = SeederSettings()

    def get(name: str, default: T, cast: Callable[[str], T]) -> T:
        return _coerce(name, _lookup(name, dotenv_dir, env), default, cast)

    limits = ValidatorLimits(
        min_bytes=get("IMAGE_MIN_BYTES", d.limits.min_bytes, int),
        max_bytes=get("IMAGE_MAX_BYTES", d.limits.max_bytes, int),
        min_dimension=get("IMAGE_MIN_DIMENSION", d.limits.min_dimension, int),
    )
    settings = SeederSettings(
        concurrency=max(1, get("SEEDER_CONCURRENCY", d.concurrency, int)),
        batch_delay=get("SEEDER_BATCH_DELAY", d.batch_delay, float),
        rate_limit_cooldown=get("SEEDER_RATE_LIMIT_COOLDOWN", d.rate_limit_cooldown, float),
        max_retries=max(1, get("SEEDER_MAX_RETRIES", d.max_retries, int)),
        stale_after=get("SEEDER_STALE_AFTER", d.stale_after, float),
        min_images_per_family=get("SEEDER_MIN_IMAGES", d.min_images_per_family, int),
        min_seed_candidates=get("SEEDER_MIN_CANDIDATES", d.min_seed_candidates, int),
        target_per_family=get("SEARCH_TARGET_PER_FAMILY", d.target_per_family, int),
        max_families_per_run=get("SEARCH_MAX_FAMILIES", d.max_families_per_run, int),
        search_delay=get("SEARCH_DELAY", d.search_delay, float),
        search_results=get("SEARCH_RESULTS", d.search_results, int),
        download_timeout=get("IMAGE_DOWNLOAD_TIMEOUT", d.download_timeout, float),
        limits=limits,
        serpapi_key=_lookup("SERPAPI_KEY", dotenv_dir, env),
        jina_key=_lookup("JINA_API_KEY", dotenv_dir, env),
        db_path=_lookup("REFIMAGE_DB_PATH", dotenv_dir, env),
        blob_dir=_lookup("REFIMAGE_BLOB_DIR", dotenv_dir, env),
    )
    log.debug(f"Seeder settings: concurrency={settings.concurrency} max_retries={settings.max_retries} stale_after={settings.stale_after}s")
    return settings

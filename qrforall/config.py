"""Runtime settings read from the environment."""

import os
from collections.abc import Mapping
from dataclasses import dataclass

APP_ENVIRONMENTS = ("development", "production", "test")

DEFAULT_APP_ENV = "development"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_BASE_URL = "http://localhost:3000"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_DB_PATH = "qrforall_db.json"
DEFAULT_LOGO_FETCH_TIMEOUT = 10.0
DEFAULT_LOGO_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_SLUG_MAX_ATTEMPTS = 10
DEFAULT_LOGO_FETCH_CONCURRENCY = 4
DEFAULT_EXPORT_SIZE = 2048


def _int(environ: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {value})")
    return value


@dataclass(frozen=True)
class Settings:
    """Service configuration.

    Attributes:
        app_env: development, production or test.
        host / port: Bind address for ``qrforall serve``.
        base_url: Public origin used in slug and management URLs, no trailing slash.
        log_level / log_file: Passed to :func:`qrforall.logging.setup_logging`.
        db_path: JSON store location; ``None`` keeps records in memory only.
        logo_fetch_timeout: Seconds allowed for connecting to and reading a logo URL.
        logo_max_bytes: Largest logo body accepted.
        slug_max_attempts: Collision retries before slug allocation gives up.
        logo_fetch_concurrency: Logo downloads allowed in flight at once.
        default_export_size: Edge in pixels when an export request omits ``size``.
    """

    app_env: str = DEFAULT_APP_ENV
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    base_url: str = DEFAULT_BASE_URL
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: str | None = None
    db_path: str | None = DEFAULT_DB_PATH
    logo_fetch_timeout: float = DEFAULT_LOGO_FETCH_TIMEOUT
    logo_max_bytes: int = DEFAULT_LOGO_MAX_BYTES
    slug_max_attempts: int = DEFAULT_SLUG_MAX_ATTEMPTS
    logo_fetch_concurrency: int = DEFAULT_LOGO_FETCH_CONCURRENCY
    default_export_size: int = DEFAULT_EXPORT_SIZE

    @property
    def debug(self) -> bool:
        return self.app_env == "development"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from *environ* (``os.environ`` by default).

        Raises:
            ValueError: a variable is present but malformed.
        """
        env = os.environ if environ is None else environ

        app_env = env.get("APP_ENV", DEFAULT_APP_ENV).strip().lower()
        if app_env not in APP_ENVIRONMENTS:
            raise ValueError(f"APP_ENV must be one of {', '.join(APP_ENVIRONMENTS)} (got {app_env!r})")

        base_url = env.get("BASE_URL", DEFAULT_BASE_URL).strip().rstrip("/")
        if not base_url.startswith(("http://", "https://")):
            raise ValueError(f"BASE_URL must be an http(s) URL (got {base_url!r})")

        port = _int(env, "PORT", DEFAULT_PORT)
        if port > 65535:
            raise ValueError(f"PORT must be <= 65535 (got {port})")

        db_path = env.get("QR_DB_PATH", DEFAULT_DB_PATH)
        return cls(
            app_env=app_env,
            host=env.get("HOST", DEFAULT_HOST),
            port=port,
            base_url=base_url,
            log_level=env.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
            log_file=env.get("LOG_FILE") or None,
            db_path=db_path or None,
            logo_fetch_timeout=_float(env, "LOGO_FETCH_TIMEOUT", DEFAULT_LOGO_FETCH_TIMEOUT),
            logo_max_bytes=_int(env, "LOGO_MAX_BYTES", DEFAULT_LOGO_MAX_BYTES),
            slug_max_attempts=_int(env, "SLUG_MAX_ATTEMPTS", DEFAULT_SLUG_MAX_ATTEMPTS),
            logo_fetch_concurrency=_int(env, "LOGO_FETCH_CONCURRENCY", DEFAULT_LOGO_FETCH_CONCURRENCY),
            default_export_size=_int(env, "DEFAULT_EXPORT_SIZE", DEFAULT_EXPORT_SIZE),
        )

"""SQLAlchemy engine lifecycle for the schema-per-tenant deployment mode."""

from typing import Dict, Optional

from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy.engine import Engine

from app.config.settings import settings

_engines: Dict[str, Engine] = {}


class ConfigurationError(Exception):
    """Database URL missing or unsupported"""


def _normalize_url(url: str) -> str:
    """Map bare postgres URLs onto the psycopg driver."""
    u = url.strip()
    if u.startswith("postgres://"):
        return "postgresql+psycopg://" + u[len("postgres://"):]
    if u.startswith("postgresql://"):
        return "postgresql+psycopg://" + u[len("postgresql://"):]
    if u.startswith(("postgresql+", "mysql+", "mariadb+", "sqlite")):
        return u
    raise ConfigurationError(
        "DATABASE_URL must be a PostgreSQL, MySQL/MariaDB or SQLite SQLAlchemy URL."
    )


def _get_url(database_url: Optional[str]) -> str:
    if database_url:
        return _normalize_url(database_url)
    if not settings.database_url:
        raise ConfigurationError(
            "DATABASE_URL not set. It is required when ISOLATION_MODE=schema."
        )
    return _normalize_url(settings.database_url)


def create_engine(
    database_url: Optional[str] = None,
    *,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> Engine:
    """Create a sync engine.

    Args:
        database_url: SQLAlchemy URL. If None, uses DATABASE_URL.
        pool_size: Connection pool size (ignored for SQLite).
        max_overflow: Extra connections beyond pool_size when busy.
        pool_pre_ping: Ping connections before use.
        echo: Log SQL (for development).

    Raises:
        ConfigurationError: URL missing or invalid.
    """
    url = _get_url(database_url)
    if url.startswith("sqlite"):
        return sa_create_engine(url, echo=echo)
    return sa_create_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        echo=echo,
    )


def get_engine(database_url: Optional[str] = None) -> Engine:
    """Get or create a cached engine; the same URL returns the same instance."""
    url = _get_url(database_url)
    if url not in _engines:
        _engines[url] = create_engine(url)
    return _engines[url]


def dispose_engine(database_url: Optional[str] = None) -> None:
    """Dispose one engine, or all of them when no URL is given."""
    if database_url is None:
        for key in list(_engines.keys()):
            _engines[key].dispose()
            del _engines[key]
        return
    url = _get_url(database_url)
    if url in _engines:
        _engines[url].dispose()
        del _engines[url]

"""Database base configuration."""
import os
import sys
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import JSON, TypeDecorator


def normalize_async_pg_url(url: str) -> str:
    """Ensure URL uses asyncpg driver; hosting providers often give postgresql:// (sync)."""
    u = (url or "").strip()
    if u.startswith("postgres://"):
        u = "postgresql://" + u[len("postgres://"):]
    if u.startswith("postgresql://"):
        return u.replace("postgresql://", "postgresql+asyncpg://", 1)
    return u


def async_pg_connect_args(url: str) -> dict:
    """asyncpg does not accept sslmode; translate sslmode=require into ssl=True."""
    if not url.startswith("postgresql+asyncpg://"):
        return {}
    qs = parse_qs(urlparse(url).query, keep_blank_values=True)
    return {"ssl": True} if qs.get("sslmode") == ["require"] else {}


def async_pg_url_without_sslmode(url: str) -> str:
    """Return URL with sslmode removed so asyncpg does not get unknown kwarg sslmode."""
    parsed = urlparse(url)
    qs = parse_qs(parsed.query, keep_blank_values=True)
    qs.pop("sslmode", None)
    return urlunparse(parsed._replace(query=urlencode(qs, doseq=True)))


class JSONBType(TypeDecorator):
    """JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


# Tests build their own engine (aiosqlite); don't touch the real database on import
_is_pytest = "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ

if not _is_pytest:
    from digipay.settings import settings

    _db_url = normalize_async_pg_url(settings.database_url)
    engine = create_async_engine(
        async_pg_url_without_sslmode(_db_url),
        connect_args=async_pg_connect_args(_db_url),
        echo=settings.database_echo,
        pool_pre_ping=True,
    )

    AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
else:
    # In test mode, create dummy objects that will be overridden
    engine = None
    AsyncSessionLocal = None


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# Models are imported in digipay/infra/db/models/__init__.py; importing them here
# would be circular (base.py -> models -> base.py)

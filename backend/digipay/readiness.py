"""Readiness checks: config, packages, database, redis, payment and KYC providers."""
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

logger = logging.getLogger(__name__)

# Result: (passed: bool, message: str)
CheckResult = tuple[bool, str]
ChecksDict = dict[str, CheckResult]

REQUIRED_CHECKS = {"config", "packages", "database"}


def check_config() -> CheckResult:
    """Load settings and read the values the API cannot start without."""
    try:
        from digipay.settings import get_settings
        s = get_settings()
        _ = s.app_name
        _ = s.database_url
        _ = s.redis_url
        if not s.secret_key:
            return False, "secret_key is empty"
        return True, "ok"
    except Exception as e:
        return False, str(e)


def check_packages() -> CheckResult:
    """Import critical modules: uvicorn, sqlalchemy, redis, httpx, digipay.main."""
    missing = []
    try:
        import uvicorn  # noqa: F401
    except ImportError:
        missing.append("uvicorn")
    try:
        import sqlalchemy  # noqa: F401
    except ImportError:
        missing.append("sqlalchemy")
    try:
        import redis  # noqa: F401
    except ImportError:
        missing.append("redis")
    try:
        import httpx  # noqa: F401
    except ImportError:
        missing.append("httpx")
    try:
        import digipay.main  # noqa: F401
    except ImportError as e:
        missing.append(f"digipay.main ({e})")
    if missing:
        return False, f"missing: {', '.join(missing)}"
    return True, "ok"


async def _check_database_async(database_url: str) -> CheckResult:
    """Run a trivial query against the database."""
    try:
        from digipay.infra.db.base import (
            async_pg_connect_args,
            async_pg_url_without_sslmode,
            normalize_async_pg_url,
        )
        url = normalize_async_pg_url(database_url)
        engine = create_async_engine(
            async_pg_url_without_sslmode(url),
            pool_pre_ping=True,
            connect_args=async_pg_connect_args(url),
        )
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        await engine.dispose()
        return True, "ok"
    except Exception as e:
        return False, str(e)


async def _check_redis_async(redis_url: str) -> CheckResult:
    try:
        import redis.asyncio as redis_lib
        client = redis_lib.from_url(redis_url)
        try:
            await client.ping()
        finally:
            await client.aclose()
        return True, "ok"
    except Exception as e:
        return False, str(e)


def check_redis() -> CheckResult:
    """Check Redis connectivity using settings.redis_url."""
    try:
        from digipay.settings import get_settings
        import redis as redis_lib
        client = redis_lib.from_url(get_settings().redis_url)
        client.ping()
        client.close()
        return True, "ok"
    except Exception as e:
        return False, str(e)


def check_paystack() -> CheckResult:
    """Deposits and payouts need a Paystack secret key."""
    from digipay.settings import get_settings
    if not (get_settings().paystack_secret_key or "").strip():
        return False, "skipped (not configured)"
    return True, "ok"


def check_kyc() -> CheckResult:
    """KYC verification needs a YouVerify API key."""
    from digipay.settings import get_settings
    if not (get_settings().kyc_api_key or "").strip():
        return False, "skipped (not configured)"
    return True, "ok"


def run_all_checks() -> ChecksDict:
    """Run all readiness checks (sync). Returns dict of check_name -> (passed, message)."""
    import asyncio
    from digipay.settings import get_settings
    return {
        "config": check_config(),
        "packages": check_packages(),
        "database": asyncio.run(_check_database_async(get_settings().database_url)),
        "redis": check_redis(),
        "paystack": check_paystack(),
        "kyc": check_kyc(),
    }


async def run_all_checks_async() -> ChecksDict:
    """Run all readiness checks (async). Use from async context (e.g. GET /ready) to avoid nested event loop."""
    from digipay.settings import get_settings
    s = get_settings()
    return {
        "config": check_config(),
        "packages": check_packages(),
        "database": await _check_database_async(s.database_url),
        "redis": await _check_redis_async(s.redis_url),
        "paystack": check_paystack(),
        "kyc": check_kyc(),
    }


def is_ready(checks: ChecksDict | None = None) -> tuple[bool, dict[str, str]]:
    """
    True if all required checks pass. Redis and the vendors are reported but optional.
    Returns (ready: bool, checks_summary: dict of name -> "ok" | "skipped" | error message).
    """
    if checks is None:
        checks = run_all_checks()
    summary: dict[str, str] = {name: msg for name, (passed, msg) in checks.items()}
    all_required = all(checks[n][0] for n in REQUIRED_CHECKS if n in checks)
    return all_required, summary

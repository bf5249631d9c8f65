from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from edugate.core.config import Settings, get_settings


def create_engine_from_settings(settings: Settings | None = None) -> AsyncEngine:
    # Build the process engine; callers own it and hand it to components explicitly.
    resolved = settings or get_settings()
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    # Configure bounded asyncpg pools for predictable latency under load.
    if not resolved.database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = max(1, int(resolved.db_pool_size))
        engine_kwargs["max_overflow"] = max(0, int(resolved.db_max_overflow))
        engine_kwargs["pool_timeout"] = max(1, int(resolved.db_pool_timeout_s))
        engine_kwargs["pool_recycle"] = 1800
        if resolved.db_statement_timeout_ms > 0:
            engine_kwargs["connect_args"] = {
                "server_settings": {"statement_timeout": str(int(resolved.db_statement_timeout_ms))}
            }
    return create_async_engine(resolved.database_url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Shared-schema sessions; tenant sessions come from persistence.tenancy.
    return async_sessionmaker(engine, expire_on_commit=False)


def pool_stats(engine: AsyncEngine) -> dict[str, int | None]:
    # Expose pool counters so leaked tenant connections show up in health output.
    pool = engine.sync_engine.pool
    checked_out_fn = getattr(pool, "checkedout", None)
    checked_in_fn = getattr(pool, "checkedin", None)
    size_fn = getattr(pool, "size", None)
    return {
        "size": int(size_fn()) if callable(size_fn) else None,
        "checked_out": int(checked_out_fn()) if callable(checked_out_fn) else None,
        "checked_in": int(checked_in_fn()) if callable(checked_in_fn) else None,
    }

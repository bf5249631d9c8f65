from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from edugate.domain.models import TENANT_SCHEMA, TenantBase
from edugate.persistence.guards import quote_schema, validate_schema_name


_SET_SEARCH_PATH = text("SELECT set_config('search_path', :search_path, true)")


def _search_path(schema_name: str) -> str:
    return f"{quote_schema(schema_name)}, public"


def _pin_search_path(schema_name: str):
    search_path = _search_path(schema_name)

    def _after_begin(session, transaction, connection) -> None:
        # Transaction-local setting; it is discarded before the connection returns to the pool.
        connection.execute(_SET_SEARCH_PATH, {"search_path": search_path})

    return _after_begin


def bind_tenant_engine(engine: AsyncEngine, schema_name: str) -> AsyncEngine:
    # Route every tenant-table statement to the validated schema.
    schema = validate_schema_name(schema_name)
    return engine.execution_options(schema_translate_map={TENANT_SCHEMA: schema})


@asynccontextmanager
async def tenant_session(engine: AsyncEngine, schema_name: str) -> AsyncIterator[AsyncSession]:
    """Open a session pinned to one tenant schema.

    Tenant tables are translated to ``schema_name`` and, on PostgreSQL, each
    transaction also pins ``search_path`` so raw SQL cannot drift into another
    tenant. The pooled connection is released on every exit path.
    """
    schema = validate_schema_name(schema_name)
    session = AsyncSession(bind=bind_tenant_engine(engine, schema), expire_on_commit=False)
    if engine.dialect.name == "postgresql":
        event.listen(session.sync_session, "after_begin", _pin_search_path(schema))
    try:
        yield session
    finally:
        await session.close()


async def provision_tenant_schema(engine: AsyncEngine, schema_name: str) -> None:
    # Create the schema (PostgreSQL) and the tenant tables inside it.
    schema = validate_schema_name(schema_name)
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quote_schema(schema)}"))
        translated = await conn.execution_options(schema_translate_map={TENANT_SCHEMA: schema})
        await translated.run_sync(TenantBase.metadata.create_all)

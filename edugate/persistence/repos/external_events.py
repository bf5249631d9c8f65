from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.core.errors import ConfigurationError
from edugate.domain.models import ExternalEvent


_EVENT_KEY = [ExternalEvent.provider, ExternalEvent.provider_event_id]


def _insert_for(session: AsyncSession) -> Callable[..., Any]:
    # Upserts need the dialect-specific insert construct.
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise ConfigurationError(f"Unsupported database dialect for event upserts: {dialect}")


async def get_processed_at(
    session: AsyncSession,
    *,
    provider: str,
    provider_event_id: str,
    for_update: bool = False,
) -> tuple[bool, datetime | None]:
    # Return (row exists, processed timestamp).
    stmt = select(ExternalEvent.processed_at).where(
        ExternalEvent.provider == provider,
        ExternalEvent.provider_event_id == provider_event_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    row = result.first()
    if row is None:
        return False, None
    return True, row[0]


async def claim_event(
    session: AsyncSession,
    *,
    provider: str,
    provider_event_id: str,
    event_type: str,
    payload: dict[str, Any],
) -> None:
    # Insert the unprocessed row if absent; a concurrent claimer waits for the winner.
    insert = _insert_for(session)
    stmt = insert(ExternalEvent).values(
        provider=provider,
        provider_event_id=provider_event_id,
        event_type=event_type,
        payload=payload,
        processed_at=None,
        created_at=datetime.now(timezone.utc),
    )
    await session.execute(stmt.on_conflict_do_nothing(index_elements=_EVENT_KEY))


async def upsert_processed(
    session: AsyncSession,
    *,
    provider: str,
    provider_event_id: str,
    event_type: str,
    payload: dict[str, Any],
    processed_at: datetime,
) -> None:
    # Existing rows only get their processed timestamp refreshed.
    insert = _insert_for(session)
    stmt = insert(ExternalEvent).values(
        provider=provider,
        provider_event_id=provider_event_id,
        event_type=event_type,
        payload=payload,
        processed_at=processed_at,
        created_at=processed_at,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=_EVENT_KEY,
        set_={"processed_at": stmt.excluded.processed_at},
    )
    await session.execute(stmt)

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from edugate.core.config import Settings, get_settings
from edugate.persistence.db import build_session_factory, create_engine_from_settings
from edugate.services.audit import AuditTrail
from edugate.services.overrides import OverrideService


logger = logging.getLogger(__name__)


def build_override_service(engine: AsyncEngine) -> OverrideService:
    session_factory = build_session_factory(engine)
    return OverrideService(session_factory, AuditTrail(engine, session_factory))


async def run_override_sweep_cycle(service: OverrideService) -> int:
    # One pass: deactivate every override that is still flagged active past its expiry.
    expired = await service.cleanup_expired()
    logger.info("override_sweep_cycle expired=%s", expired)
    return expired


async def run_override_sweep_loop(
    settings: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
    max_cycles: int | None = None,
) -> None:
    """Sweep expired overrides on a fixed cadence until cancelled.

    Cycle failures are logged and the loop carries on; readers already ignore
    expired rows, so a missed sweep only delays the flag flip.
    """
    resolved = settings or get_settings()
    interval = max(1, int(resolved.override_sweep_interval_s))
    owned_engine = engine is None
    active_engine = engine or create_engine_from_settings(resolved)
    service = build_override_service(active_engine)
    cycles = 0
    try:
        while max_cycles is None or cycles < max_cycles:
            try:
                await run_override_sweep_cycle(service)
            except Exception:  # noqa: BLE001 - keep loop alive while surfacing errors in logs.
                logger.exception("override sweep cycle failed")
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            await asyncio.sleep(interval)
    finally:
        if owned_engine:
            await active_engine.dispose()

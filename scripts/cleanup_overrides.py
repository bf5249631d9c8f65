from __future__ import annotations

import asyncio

from edugate.core.logging import configure_logging
from edugate.persistence.db import create_engine_from_settings
from edugate.workers.override_sweeper import build_override_service, run_override_sweep_cycle


async def cleanup() -> None:
    configure_logging()
    engine = create_engine_from_settings()
    try:
        expired = await run_override_sweep_cycle(build_override_service(engine))
    finally:
        await engine.dispose()
    print(f"expired_overrides={expired}")


if __name__ == "__main__":
    asyncio.run(cleanup())

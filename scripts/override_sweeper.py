from __future__ import annotations

import asyncio

from edugate.core.logging import configure_logging
from edugate.workers.override_sweeper import run_override_sweep_loop


async def _main() -> None:
    # Dedicated process so expired overrides are flipped without request traffic.
    configure_logging()
    await run_override_sweep_loop()


if __name__ == "__main__":
    asyncio.run(_main())

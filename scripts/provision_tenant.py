from __future__ import annotations

import argparse
import asyncio

from edugate.core.logging import configure_logging
from edugate.persistence.db import build_session_factory, create_engine_from_settings
from edugate.services.tenancy import register_tenant


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Register a school and provision its schema")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    parser.add_argument("--name", required=True, help="School display name")
    parser.add_argument("--domain", default=None, help="Subdomain label or custom domain")
    parser.add_argument(
        "--schema",
        default=None,
        help="Schema name; derived from the tenant id when omitted",
    )
    return parser


async def _provision(args: argparse.Namespace) -> None:
    configure_logging()
    engine = create_engine_from_settings()
    try:
        tenant = await register_tenant(
            engine,
            build_session_factory(engine),
            tenant_id=args.tenant,
            name=args.name,
            domain=args.domain,
            schema_name=args.schema,
        )
    finally:
        await engine.dispose()
    print(f"tenant_id={tenant.id} schema={tenant.schema_name}")


if __name__ == "__main__":
    asyncio.run(_provision(_build_parser().parse_args()))

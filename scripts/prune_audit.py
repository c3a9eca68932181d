from __future__ import annotations

import argparse
import asyncio

from clubhouse.core.config import get_settings
from clubhouse.core.logging import configure_logging
from clubhouse.persistence.db import SessionLocal
from clubhouse.services.maintenance import prune_audit_entries


async def prune(retention_days: int, organization_id: str | None) -> None:
    async with SessionLocal() as session:
        deleted = await prune_audit_entries(
            session,
            retention_days=retention_days,
            organization_id=organization_id,
        )
        await session.commit()
        print(f"pruned_audit_entries={deleted}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Delete audit entries older than the retention window")
    parser.add_argument("--retention-days", type=int, default=None)
    parser.add_argument("--organization-id", default=None, help="Limit the purge to one organization")
    args = parser.parse_args()

    configure_logging()
    settings = get_settings()
    retention = args.retention_days if args.retention_days is not None else settings.audit_retention_days
    asyncio.run(prune(retention, args.organization_id))


if __name__ == "__main__":
    main()

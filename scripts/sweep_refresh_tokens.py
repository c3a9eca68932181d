from __future__ import annotations

import asyncio

from clubhouse.core.logging import configure_logging
from clubhouse.persistence.db import SessionLocal
from clubhouse.services.maintenance import sweep_expired_refresh_tokens


async def sweep() -> None:
    async with SessionLocal() as session:
        deleted = await sweep_expired_refresh_tokens(session)
        await session.commit()
        print(f"swept_refresh_tokens={deleted}")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(sweep())

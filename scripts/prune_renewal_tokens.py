from __future__ import annotations

import argparse
import asyncio

from docgate.persistence.db import SessionLocal
from docgate.services.maintenance import prune_renewal_tokens


async def prune(retention_days: int | None) -> None:
    async with SessionLocal() as session:
        deleted = await prune_renewal_tokens(session, retention_days=retention_days)
        await session.commit()
        print(f"pruned_renewal_tokens={deleted}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delete expired or consumed renewal tokens")
    parser.add_argument("--retention-days", type=int, default=None)
    args = parser.parse_args()
    asyncio.run(prune(args.retention_days))

#!/usr/bin/env python3
"""
Monthly credit distribution for yearly subscribers and lifetime members.
Schedule once a month (e.g. cron: 0 1 1 * *). Re-running in the same month grants nothing.
"""

import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()

from backoffice.core.database import AsyncSessionLocal  # noqa: E402
from backoffice.services.credit_service import credit_service  # noqa: E402


async def distribute_credits() -> int:
    print("💳 Distributing monthly credits...")
    print("=" * 50)

    if not AsyncSessionLocal:
        print("❌ Database not configured. Set DATABASE_URL in your .env file")
        return 1

    async with AsyncSessionLocal() as db:
        granted = await credit_service.distribute_monthly_credits(db)

    print(f"\n✅ Granted monthly credits to {granted} members")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(distribute_credits()))

import asyncio
import sys

import asyncpg

from config import get_database_config

REQUIRED_TABLES = ("study_milestones", "daily_recommendations", "user_settings")


async def check():
    url = get_database_config().url
    try:
        conn = await asyncpg.connect(url)
    except (asyncpg.PostgresError, asyncpg.InterfaceError, ValueError, OSError) as e:
        print(f"Connection failed: {e}")
        sys.exit(1)

    try:
        print("Successfully connected to database!")
        rows = await conn.fetch(
            "SELECT table_name FROM information_schema.tables WHERE table_name = ANY($1::text[])",
            list(REQUIRED_TABLES)
        )
        present = {row["table_name"] for row in rows}
        missing = [t for t in REQUIRED_TABLES if t not in present]
        if missing:
            print(f"Missing tables: {', '.join(missing)} (set DATABASE_CREATE_TABLES=true to bootstrap)")
            sys.exit(1)
        print("All required tables present")
    finally:
        await conn.close()
    sys.exit(0)

if __name__ == "__main__":
    asyncio.run(check())

"""Reset database to clean state: drop every booking table and recreate it."""
import asyncio

from carenow.lib.db import drop_db, engine, init_db
import carenow.models  # noqa: F401  registers tables on Base.metadata


async def main() -> None:
    print("Resetting database...")
    await drop_db()
    await init_db()
    await engine.dispose()
    print("Database reset complete!")


if __name__ == "__main__":
    asyncio.run(main())

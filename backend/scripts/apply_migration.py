"""Apply SQL files from backend/migrations in name order.

Usage: python scripts/apply_migration.py [migration_filename ...]
"""

import asyncio
import logging
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from circlehood.infra import postgres  # noqa: E402
from circlehood.obs import logging as obs_logging  # noqa: E402

MIGRATIONS_DIR = BACKEND_ROOT / "migrations"

log = logging.getLogger("circlehood.migrations")


def _migration_files(names: list[str]) -> list[Path]:
    if names:
        return [MIGRATIONS_DIR / name for name in names]
    return sorted(MIGRATIONS_DIR.glob("*.sql"))


async def apply_migrations(names: list[str]) -> None:
    pool = await postgres.init_pool()
    try:
        for path in _migration_files(names):
            if not path.exists():
                raise FileNotFoundError(f"Migration file not found: {path}")
            log.info("applying_migration", extra={"migration": path.name})
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(path.read_text(encoding="utf-8"))
            log.info("migration_applied", extra={"migration": path.name})
    finally:
        await postgres.close_pool()


if __name__ == "__main__":
    obs_logging.configure_logging()
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(apply_migrations(sys.argv[1:]))

"""SQL migration runner applied on application startup."""
from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Awaitable, Callable, Iterable

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web

from sbtc_gateway.settings import settings

logger = structlog.get_logger(__name__)

DEFAULT_MIGRATION_PATHS = (
    Path(__file__).resolve().parents[3] / "migrations",  # source checkout
    Path("/app/migrations"),  # container image
)


def load_migrations(migrations_dir: Path) -> dict[str, tuple[str, str]]:
    """Return ``{version: (sql, checksum)}`` ordered by file name."""
    migrations: dict[str, tuple[str, str]] = {}
    for path in sorted(migrations_dir.glob("*.sql")):
        version = path.stem
        if version in migrations:
            raise ValueError(f"Duplicate migration version detected: {version}")
        sql = path.read_text(encoding="utf-8")
        migrations[version] = (sql, hashlib.sha256(sql.encode("utf-8")).hexdigest())
    return migrations


async def _connect(database_url: str, *, retries: int, delay: float) -> asyncpg.Connection | None:
    for attempt in range(1, retries + 1):
        try:
            return await asyncpg.connect(database_url)
        except (OSError, asyncpg.PostgresError) as exc:
            logger.warning(
                "migrations: database not reachable",
                attempt=attempt,
                retries=retries,
                error=str(exc),
            )
            if attempt < retries:
                await asyncio.sleep(delay)
    return None


async def apply_migrations(conn: asyncpg.Connection, migrations: dict[str, tuple[str, str]]) -> int:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version text PRIMARY KEY,
            checksum text NOT NULL,
            applied_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    applied = {row["version"]: row["checksum"] for row in rows}

    count = 0
    for version, (sql, checksum) in migrations.items():
        if version in applied:
            if applied[version] != checksum:
                raise RuntimeError(
                    f"Checksum mismatch for {version}: "
                    f"{applied[version]} (db) != {checksum} (file)"
                )
            continue
        logger.info("migrations: applying", version=version)
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                version,
                checksum,
            )
        count += 1
    return count


def create_migration_runner(
    possible_paths: Iterable[Path] = DEFAULT_MIGRATION_PATHS,
    *,
    retries: int = 5,
    retry_delay: float = 2.0,
) -> Callable[[web.Application], Awaitable[None]]:
    """Create an aiohttp startup hook that applies pending SQL migrations."""
    paths = list(possible_paths)

    async def apply_migrations_on_startup(_app: web.Application) -> None:
        migrations_dir = next((path for path in paths if path.exists()), None)
        if migrations_dir is None:
            logger.warning("migrations: directory not found, skipping", tried=[str(p) for p in paths])
            return

        migrations = load_migrations(migrations_dir)
        if not migrations:
            logger.warning("migrations: none found, skipping", directory=str(migrations_dir))
            return

        conn = await _connect(str(settings.database_url), retries=retries, delay=retry_delay)
        if conn is None:
            raise RuntimeError("Could not connect to the database to apply migrations")
        try:
            applied = await apply_migrations(conn, migrations)
        finally:
            await conn.close()
        logger.info("migrations: done", applied=applied, known=len(migrations))

    return apply_migrations_on_startup

from __future__ import annotations

import logging
from pathlib import Path

from database.base import Database

LOGGER = logging.getLogger(__name__)


MIGRATION_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    id TEXT PRIMARY KEY,
    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""


def migration_files(database: Database, migrations_path: Path) -> list[Path]:
    driver_dir = migrations_path / database.driver
    return sorted(driver_dir.glob("*.sql"))


async def run_migrations(database: Database, migrations_path: Path) -> list[str]:
    await database.executescript(MIGRATION_TABLE_SQL)
    applied = await database.fetchall("SELECT id FROM schema_migrations;")
    applied_ids = {row["id"] for row in applied}

    newly_applied: list[str] = []
    for migration_file in migration_files(database, migrations_path):
        migration_id = migration_file.name
        if migration_id in applied_ids:
            continue
        sql = migration_file.read_text(encoding="utf-8")
        LOGGER.info("Applying migration %s (%s)", migration_id, database.driver)
        await database.executescript(sql)
        await database.execute("INSERT INTO schema_migrations(id) VALUES (?);", [migration_id])
        newly_applied.append(migration_id)
    return newly_applied

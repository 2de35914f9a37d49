"""Schema migrations.

Migrations are SQL files in vigil/migrations/ named NNN_description.sql.
The runner records each applied version in ``_schema_version`` itself, so
migration files contain only DDL.  A failing migration leaves the recorded
version at the last good one.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from vigil.storage.database import Database

logger = logging.getLogger(__name__)

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.*\.sql$")

MIGRATION_DIR = Path(__file__).parent.parent / "migrations"

_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS _schema_version (
    version     INTEGER PRIMARY KEY,
    name        TEXT NOT NULL,
    applied_at  TEXT NOT NULL DEFAULT (datetime('now'))
)
"""


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    sql: str


def discover_migrations(directory: Path = MIGRATION_DIR) -> list[Migration]:
    """Migration files in ``directory``, ordered by version."""
    if not directory.exists():
        logger.warning("Migration directory not found: %s", directory)
        return []

    found = []
    for sql_file in sorted(directory.glob("*.sql")):
        match = MIGRATION_PATTERN.match(sql_file.name)
        if match:
            found.append(Migration(int(match.group(1)), sql_file.name, sql_file.read_text()))
    return found


def pending_migrations(db: Database) -> list[Migration]:
    current = db.schema_version()
    return [m for m in discover_migrations() if m.version > current]


def ensure_schema(db: Database) -> int:
    """Apply every pending migration. Returns the resulting schema version."""
    db.execute(_VERSION_TABLE)
    current = db.schema_version()

    applied = 0
    for migration in pending_migrations(db):
        logger.info(
            "Applying migration %s (v%d -> v%d)", migration.name, current, migration.version
        )
        try:
            db.executescript(migration.sql)
            db.execute(
                "INSERT INTO _schema_version (version, name) VALUES (?, ?)",
                (migration.version, migration.name),
            )
            db.conn.commit()
        except Exception as e:
            logger.error("Migration %s failed: %s", migration.name, e)
            raise RuntimeError(f"Migration {migration.name} failed: {e}") from e
        applied += 1
        current = migration.version

    if applied:
        logger.info("Applied %d migration(s). Schema version: %d", applied, current)
    else:
        logger.debug("Schema up to date (version %d)", current)
    return current

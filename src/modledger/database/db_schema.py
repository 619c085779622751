"""
Database schema initialization and version tracking.

Creates the moderation_records table, its indexes and the schema_version
table. Timestamps are INTEGER unix milliseconds.
"""

import aiosqlite
from modledger.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates and versions the ledger schema."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create all tables and indexes if they do not exist yet.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized (version %d)", SCHEMA_VERSION)

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        # Records are never deleted; expiry is computed from timestamp + duration.
        await db.execute("""
            CREATE TABLE IF NOT EXISTS moderation_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                target_id TEXT NOT NULL,
                target_display_name TEXT NOT NULL DEFAULT '',
                staff_id TEXT,
                staff_name TEXT NOT NULL,
                action TEXT NOT NULL,
                severity TEXT NOT NULL,
                reason TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                duration_seconds INTEGER NOT NULL DEFAULT 0 CHECK (duration_seconds >= 0),
                active INTEGER NOT NULL DEFAULT 1,
                revoked_at INTEGER,
                revoked_by TEXT,
                is_escalation INTEGER NOT NULL DEFAULT 0,
                appeal_status TEXT NOT NULL DEFAULT 'NOT_APPEALED',
                appealed_at INTEGER,
                ip_address TEXT,
                version INTEGER NOT NULL DEFAULT 1,
                updated_at INTEGER
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        await db.execute("CREATE INDEX IF NOT EXISTS idx_records_target ON moderation_records(target_id, timestamp DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_records_staff ON moderation_records(staff_id, timestamp DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_records_ip ON moderation_records(ip_address, timestamp DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_records_timestamp ON moderation_records(timestamp DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_records_appeal ON moderation_records(appeal_status, timestamp)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_records_action ON moderation_records(action, active)")

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

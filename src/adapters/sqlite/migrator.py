"""Forward-only SQL migrations for the invite registry database."""

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

DOWN_MARKER = "-- Down"


class MigrationError(RuntimeError):
    pass


class SQLiteMigrator:
    def __init__(self, db_path: str | Path, migrations_dir: str | Path):
        self.db_path = str(db_path)
        self.migrations_dir = Path(migrations_dir)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        # WAL lets readers proceed while a redeem or sweep holds the write lock
        conn.execute("PRAGMA journal_mode = WAL;")
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS _migrations (
                filename TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
        """)
        return conn

    def available(self) -> list[str]:
        return sorted(p.name for p in self.migrations_dir.glob("*.sql"))

    def applied(self) -> list[str]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT filename FROM _migrations ORDER BY filename").fetchall()
            return [r[0] for r in rows]
        finally:
            conn.close()

    def pending(self) -> list[str]:
        done = set(self.applied())
        return [name for name in self.available() if name not in done]

    def run_migrations(self) -> list[str]:
        """Apply pending migrations in filename order; returns those applied."""
        todo = self.pending()
        conn = self._connect()
        try:
            for filename in todo:
                logger.info("Applying migration %s", filename)
                self._apply(conn, filename)
        finally:
            conn.close()
        logger.info("Schema up to date (%d applied)", len(todo))
        return todo

    def _up_script(self, filename: str) -> str:
        text = (self.migrations_dir / filename).read_text(encoding="utf-8")
        return text.split(DOWN_MARKER, 1)[0]

    def _apply(self, conn: sqlite3.Connection, filename: str) -> None:
        try:
            conn.executescript(self._up_script(filename))
            conn.execute("INSERT INTO _migrations (filename) VALUES (?)", (filename,))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise MigrationError(f"Migration {filename} failed: {e}") from e

"""
Database schema and connection handling for the QuestLog networked store.
Uses SQLite with raw SQL for simplicity.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager

from journal import DEFAULT_COLOR, PersistenceError

logger = logging.getLogger("questlog.db")

DEFAULT_DATABASE_PATH = "questlog.db"


def get_db_path(path):
    """Return the absolute path to the database file."""
    return os.path.abspath(path)


@contextmanager
def get_db(path, immediate=False):
    """
    Context manager for database connections.
    Commits on success and rolls back on any error. With `immediate=True` the
    write lock is taken up front so read-modify-write blocks are serialized.
    """
    try:
        conn = sqlite3.connect(path, timeout=10)
    except sqlite3.Error as exc:
        raise PersistenceError(f"Cannot open database {path}: {exc}") from exc
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        if immediate:
            conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise PersistenceError(str(exc)) from exc
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(path):
    """Create all tables if they don't exist and seed the stats row."""
    with get_db(path) as conn:
        conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS notes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                content TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS goals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT DEFAULT '',
                status TEXT DEFAULT 'pending',
                color TEXT DEFAULT '{DEFAULT_COLOR}',
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS subtasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                goal_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                completed INTEGER DEFAULT 0,
                color TEXT DEFAULT '{DEFAULT_COLOR}',
                FOREIGN KEY (goal_id) REFERENCES goals(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS user_stats (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                xp INTEGER DEFAULT 0,
                level INTEGER DEFAULT 1
            );

            CREATE INDEX IF NOT EXISTS idx_notes_created_at ON notes(created_at);
            CREATE INDEX IF NOT EXISTS idx_goals_created_at ON goals(created_at);
            CREATE INDEX IF NOT EXISTS idx_subtasks_goal ON subtasks(goal_id);
        """)


def migrate_db(path):
    """Run database migrations for schema changes."""
    with get_db(path) as conn:
        for table in ("goals", "subtasks"):
            cursor = conn.execute(f"PRAGMA table_info({table})")
            columns = [row[1] for row in cursor.fetchall()]

            # Databases created before goals had colors
            if "color" not in columns:
                conn.execute(
                    f"ALTER TABLE {table} ADD COLUMN color TEXT DEFAULT '{DEFAULT_COLOR}'"
                )
                logger.info("Added color column to %s", table)

        conn.execute("INSERT OR IGNORE INTO user_stats (id, xp, level) VALUES (1, 0, 1)")

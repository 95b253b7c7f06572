"""
Networked-mode journal store backed by SQLite.
"""

import logging

import db
from journal import (
    JournalStore,
    make_goal,
    make_note,
    make_stats,
    make_subtask,
    roll_over,
)

logger = logging.getLogger("questlog.sqlite_store")

GOAL_COLUMNS = ("status", "color", "title", "description")
SUBTASK_COLUMNS = ("completed", "color", "title")


def _note(row):
    return make_note(row["id"], row["content"], row["created_at"])


def _subtask(row):
    return make_subtask(
        row["id"], row["goal_id"], row["title"], row["completed"], row["color"]
    )


def _goal(row, subtasks):
    return make_goal(
        row["id"],
        row["title"],
        row["description"],
        row["status"],
        row["color"],
        row["created_at"],
        subtasks,
    )


class SQLiteJournalStore(JournalStore):
    """Journal store persisted in a SQLite database file."""

    def __init__(self, db_path=db.DEFAULT_DATABASE_PATH, task_generator=None):
        super().__init__(task_generator=task_generator)
        self.db_path = db_path
        db.init_db(db_path)
        db.migrate_db(db_path)
        logger.info("Using database %s", db.get_db_path(db_path))

    def _read(self):
        return db.get_db(self.db_path)

    def _write(self):
        return db.get_db(self.db_path, immediate=True)

    # Helpers that run inside an open connection

    def _fetch_subtasks(self, conn, goal_id):
        rows = conn.execute(
            "SELECT * FROM subtasks WHERE goal_id = ? ORDER BY id", (goal_id,)
        ).fetchall()
        return [_subtask(r) for r in rows]

    def _fetch_goal(self, conn, goal_id):
        row = conn.execute("SELECT * FROM goals WHERE id = ?", (goal_id,)).fetchone()
        if not row:
            return None
        return _goal(row, self._fetch_subtasks(conn, goal_id))

    def _fetch_stats(self, conn):
        row = conn.execute("SELECT xp, level FROM user_stats WHERE id = 1").fetchone()
        if not row:
            conn.execute(
                "INSERT OR IGNORE INTO user_stats (id, xp, level) VALUES (1, 0, 1)"
            )
            return make_stats()
        return make_stats(row["xp"], row["level"])

    def _credit(self, conn, amount):
        stats = self._fetch_stats(conn)
        if not amount:
            return stats
        stats = roll_over(stats, amount)
        conn.execute(
            "UPDATE user_stats SET xp = ?, level = ? WHERE id = 1",
            (stats["xp"], stats["level"]),
        )
        return stats

    # Notes

    def list_notes(self):
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM notes ORDER BY created_at DESC, id DESC"
            ).fetchall()
            return [_note(r) for r in rows]

    def _insert_note(self, content, created_at, xp):
        with self._write() as conn:
            cursor = conn.execute(
                "INSERT INTO notes (content, created_at) VALUES (?, ?)",
                (content, created_at),
            )
            self._credit(conn, xp)
            return make_note(cursor.lastrowid, content, created_at)

    def delete_note(self, note_id):
        with self._write() as conn:
            conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))

    # Goals

    def list_goals(self):
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM goals ORDER BY created_at DESC, id DESC"
            ).fetchall()
            return [_goal(r, self._fetch_subtasks(conn, r["id"])) for r in rows]

    def get_goal(self, goal_id):
        with self._read() as conn:
            return self._fetch_goal(conn, goal_id)

    def _insert_goal(self, title, description, color, created_at, xp):
        with self._write() as conn:
            cursor = conn.execute(
                """
                INSERT INTO goals (title, description, status, color, created_at)
                VALUES (?, ?, 'pending', ?, ?)
            """,
                (title, description, color, created_at),
            )
            self._credit(conn, xp)
            return make_goal(
                cursor.lastrowid, title, description, "pending", color, created_at
            )

    def _update_goal(self, goal_id, fields, xp_rule):
        with self._write() as conn:
            previous = self._fetch_goal(conn, goal_id)
            if previous is None:
                return None

            updates = []
            values = []
            for column in GOAL_COLUMNS:
                if column in fields:
                    updates.append(f"{column} = ?")
                    values.append(fields[column])
            values.append(goal_id)
            conn.execute(
                f"UPDATE goals SET {', '.join(updates)} WHERE id = ?", values
            )
            self._credit(conn, xp_rule(previous, fields))
            return self._fetch_goal(conn, goal_id)

    def _delete_goal(self, goal_id):
        with self._write() as conn:
            # Subtasks go with it via ON DELETE CASCADE
            conn.execute("DELETE FROM goals WHERE id = ?", (goal_id,))

    # Subtasks

    def get_subtask(self, subtask_id):
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM subtasks WHERE id = ?", (subtask_id,)
            ).fetchone()
            return _subtask(row) if row else None

    def _insert_subtasks(self, goal_id, titles, color, xp):
        with self._write() as conn:
            goal = conn.execute(
                "SELECT color FROM goals WHERE id = ?", (goal_id,)
            ).fetchone()
            if not goal:
                return None
            color = color or goal["color"]

            created = []
            for title in titles:
                cursor = conn.execute(
                    """
                    INSERT INTO subtasks (goal_id, title, completed, color)
                    VALUES (?, ?, 0, ?)
                """,
                    (goal_id, title, color),
                )
                created.append(
                    make_subtask(cursor.lastrowid, goal_id, title, False, color)
                )
            self._credit(conn, xp)
            return created

    def _update_subtask(self, subtask_id, fields, xp_rule):
        with self._write() as conn:
            row = conn.execute(
                "SELECT * FROM subtasks WHERE id = ?", (subtask_id,)
            ).fetchone()
            if not row:
                return None
            previous = _subtask(row)

            updates = []
            values = []
            for column in SUBTASK_COLUMNS:
                if column in fields:
                    updates.append(f"{column} = ?")
                    value = fields[column]
                    if column == "completed":
                        value = 1 if value else 0
                    values.append(value)
            values.append(subtask_id)
            conn.execute(
                f"UPDATE subtasks SET {', '.join(updates)} WHERE id = ?", values
            )
            self._credit(conn, xp_rule(previous, fields))

            row = conn.execute(
                "SELECT * FROM subtasks WHERE id = ?", (subtask_id,)
            ).fetchone()
            return _subtask(row)

    def delete_subtask(self, subtask_id):
        with self._write() as conn:
            conn.execute("DELETE FROM subtasks WHERE id = ?", (subtask_id,))

    # Stats

    def get_stats(self):
        with self._read() as conn:
            return self._fetch_stats(conn)

    def _credit_xp(self, amount):
        with self._write() as conn:
            return self._credit(conn, amount)

    # Backup

    def export_all(self):
        # One connection so the snapshot is taken from a single read
        with self._read() as conn:
            notes = conn.execute(
                "SELECT * FROM notes ORDER BY created_at DESC, id DESC"
            ).fetchall()
            goals = conn.execute(
                "SELECT * FROM goals ORDER BY created_at DESC, id DESC"
            ).fetchall()
            return {
                "notes": [_note(r) for r in notes],
                "goals": [
                    _goal(r, self._fetch_subtasks(conn, r["id"])) for r in goals
                ],
                "stats": self._fetch_stats(conn),
            }

    def _replace_all(self, snapshot):
        with self._write() as conn:
            conn.execute("DELETE FROM subtasks")
            conn.execute("DELETE FROM goals")
            conn.execute("DELETE FROM notes")

            conn.executemany(
                "INSERT INTO notes (id, content, created_at) VALUES (?, ?, ?)",
                [(n["id"], n["content"], n["created_at"]) for n in snapshot["notes"]],
            )
            for goal in snapshot["goals"]:
                conn.execute(
                    """
                    INSERT INTO goals (id, title, description, status, color, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """,
                    (
                        goal["id"],
                        goal["title"],
                        goal["description"],
                        goal["status"],
                        goal["color"],
                        goal["created_at"],
                    ),
                )
                conn.executemany(
                    """
                    INSERT INTO subtasks (id, goal_id, title, completed, color)
                    VALUES (?, ?, ?, ?, ?)
                """,
                    [
                        (
                            s["id"],
                            goal["id"],
                            s["title"],
                            1 if s["completed"] else 0,
                            s["color"],
                        )
                        for s in goal["subtasks"]
                    ],
                )

            stats = snapshot["stats"]
            conn.execute(
                "INSERT OR REPLACE INTO user_stats (id, xp, level) VALUES (1, ?, ?)",
                (stats["xp"], stats["level"]),
            )

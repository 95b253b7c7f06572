"""
Local-only journal store.

Keeps notes, goals (with nested subtasks) and stats as JSON strings under the
keys `notes`, `goals` and `stats` of a key-value storage surface, the same
layout the browser build keeps in localStorage. A `next_ids` key holds the
next id per collection so ids are never reused after a delete.
"""

import copy
import json
import logging
import os
import tempfile
import threading

from journal import (
    JournalStore,
    PersistenceError,
    ValidationError,
    make_goal,
    make_note,
    make_stats,
    make_subtask,
    newest_first,
    parse_snapshot,
    roll_over,
)

logger = logging.getLogger("questlog.local_store")

NOTES_KEY = "notes"
GOALS_KEY = "goals"
STATS_KEY = "stats"
NEXT_IDS_KEY = "next_ids"


class KeyValueStorage:
    """String-to-string storage in the shape of the Web Storage API."""

    def get_item(self, key):
        raise NotImplementedError

    def set_item(self, key, value):
        raise NotImplementedError

    def set_items(self, items):
        """Write several keys; backends that can, do it in one write."""
        for key, value in items.items():
            self.set_item(key, value)


class MemoryStorage(KeyValueStorage):
    """Process-local storage, mostly for tests."""

    def __init__(self, initial=None):
        self._data = dict(initial or {})

    def get_item(self, key):
        return self._data.get(key)

    def set_item(self, key, value):
        self._data[key] = value

    def set_items(self, items):
        self._data.update(items)


class JsonFileStorage(KeyValueStorage):
    """All keys in one JSON object on disk, replaced atomically on write."""

    def __init__(self, path):
        self.path = path

    def _load(self):
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"{self.path} is not a storage file")
        return data

    def get_item(self, key):
        return self._load().get(key)

    def set_item(self, key, value):
        self.set_items({key: value})

    def set_items(self, items):
        data = self._load()
        data.update(items)
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        except OSError as exc:
            raise PersistenceError(f"Cannot write {self.path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise PersistenceError(f"Cannot write {self.path}: {exc}") from exc


def _next_id(records):
    return max((r["id"] for r in records), default=0) + 1


class LocalJournalStore(JournalStore):
    """Journal store persisted in a KeyValueStorage."""

    def __init__(self, storage=None, task_generator=None):
        super().__init__(task_generator=task_generator)
        self.storage = storage if storage is not None else MemoryStorage()
        self._lock = threading.RLock()
        with self._lock:
            self._normalize_stored()

    # Raw access

    def _load(self, key, default):
        raw = self.storage.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            raise PersistenceError(f"Stored '{key}' is corrupt") from exc

    def _notes(self):
        return self._load(NOTES_KEY, [])

    def _goals(self):
        return self._load(GOALS_KEY, [])

    def _stats(self):
        return self._load(STATS_KEY, make_stats())

    def _save(self, notes=None, goals=None, stats=None, next_ids=None):
        items = {}
        if notes is not None:
            items[NOTES_KEY] = json.dumps(notes)
        if goals is not None:
            items[GOALS_KEY] = json.dumps(goals)
        if stats is not None:
            items[STATS_KEY] = json.dumps(stats)
        if next_ids is not None:
            items[NEXT_IDS_KEY] = json.dumps(next_ids)
        self.storage.set_items(items)

    def _claim_ids(self, kind, records, count=1):
        """Reserve `count` ids above any id ever given out for `kind`.

        Returns the first id and the counters to save with the new records.
        """
        next_ids = self._load(NEXT_IDS_KEY, {})
        first = max(next_ids.get(kind, 1), _next_id(records))
        next_ids[kind] = first + count
        return first, next_ids

    def _normalize_stored(self):
        """Rewrite stored records in canonical form.

        Data left by the browser build may lack `goal_id` on subtasks, carry
        fractional subtask ids or store `completed` as 0/1.
        """
        stored = {
            "notes": self._notes(),
            "goals": self._goals(),
            "stats": self._stats(),
        }
        try:
            snapshot = parse_snapshot(stored)
        except ValidationError as exc:
            raise PersistenceError(f"Stored journal data is invalid: {exc}") from exc
        changed = {
            key: value
            for key, value in snapshot.items()
            if json.dumps(value) != self.storage.get_item(key)
        }
        if changed:
            logger.debug("Normalizing stored keys: %s", ", ".join(sorted(changed)))
            self._save(**changed)

    def _with_xp(self, amount):
        stats = self._stats()
        return roll_over(stats, amount) if amount else None

    # Notes

    def list_notes(self):
        with self._lock:
            return newest_first(self._notes())

    def _insert_note(self, content, created_at, xp):
        with self._lock:
            notes = self._notes()
            note_id, next_ids = self._claim_ids("notes", notes)
            note = make_note(note_id, content, created_at)
            self._save(
                notes=[note] + notes, stats=self._with_xp(xp), next_ids=next_ids
            )
            return copy.deepcopy(note)

    def delete_note(self, note_id):
        with self._lock:
            notes = self._notes()
            kept = [n for n in notes if n["id"] != note_id]
            if len(kept) != len(notes):
                self._save(notes=kept)

    # Goals

    def list_goals(self):
        with self._lock:
            return newest_first(self._goals())

    def get_goal(self, goal_id):
        with self._lock:
            for goal in self._goals():
                if goal["id"] == goal_id:
                    return goal
            return None

    def _insert_goal(self, title, description, color, created_at, xp):
        with self._lock:
            goals = self._goals()
            goal_id, next_ids = self._claim_ids("goals", goals)
            goal = make_goal(goal_id, title, description, "pending", color, created_at)
            self._save(
                goals=[goal] + goals, stats=self._with_xp(xp), next_ids=next_ids
            )
            return copy.deepcopy(goal)

    def _update_goal(self, goal_id, fields, xp_rule):
        with self._lock:
            goals = self._goals()
            for goal in goals:
                if goal["id"] == goal_id:
                    previous = copy.deepcopy(goal)
                    goal.update(fields)
                    self._save(
                        goals=goals, stats=self._with_xp(xp_rule(previous, fields))
                    )
                    return goal
            return None

    def _delete_goal(self, goal_id):
        with self._lock:
            goals = self._goals()
            # Subtasks live inside the goal record and go with it
            kept = [g for g in goals if g["id"] != goal_id]
            if len(kept) != len(goals):
                self._save(goals=kept)

    # Subtasks

    def _all_subtasks(self, goals):
        return [s for g in goals for s in g["subtasks"]]

    def get_subtask(self, subtask_id):
        with self._lock:
            for subtask in self._all_subtasks(self._goals()):
                if subtask["id"] == subtask_id:
                    return subtask
            return None

    def _insert_subtasks(self, goal_id, titles, color, xp):
        with self._lock:
            goals = self._goals()
            goal = next((g for g in goals if g["id"] == goal_id), None)
            if goal is None:
                return None
            color = color or goal["color"]

            next_id, next_ids = self._claim_ids(
                "subtasks", self._all_subtasks(goals), len(titles)
            )
            created = []
            for offset, title in enumerate(titles):
                created.append(
                    make_subtask(next_id + offset, goal_id, title, False, color)
                )
            goal["subtasks"].extend(created)
            self._save(goals=goals, stats=self._with_xp(xp), next_ids=next_ids)
            return copy.deepcopy(created)

    def _update_subtask(self, subtask_id, fields, xp_rule):
        with self._lock:
            goals = self._goals()
            for subtask in self._all_subtasks(goals):
                if subtask["id"] == subtask_id:
                    previous = dict(subtask)
                    subtask.update(fields)
                    self._save(
                        goals=goals, stats=self._with_xp(xp_rule(previous, fields))
                    )
                    return subtask
            return None

    def delete_subtask(self, subtask_id):
        with self._lock:
            goals = self._goals()
            changed = False
            for goal in goals:
                kept = [s for s in goal["subtasks"] if s["id"] != subtask_id]
                if len(kept) != len(goal["subtasks"]):
                    goal["subtasks"] = kept
                    changed = True
            if changed:
                self._save(goals=goals)

    # Stats

    def get_stats(self):
        with self._lock:
            return self._stats()

    def _credit_xp(self, amount):
        with self._lock:
            stats = roll_over(self._stats(), amount)
            self._save(stats=stats)
            return stats

    # Backup

    def export_all(self):
        with self._lock:
            return super().export_all()

    def _replace_all(self, snapshot):
        with self._lock:
            self._save(
                notes=snapshot["notes"],
                goals=snapshot["goals"],
                stats=snapshot["stats"],
            )

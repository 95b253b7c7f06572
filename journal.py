"""
Shared journal model for QuestLog.
Holds the entity shapes, XP rules, validation and the JournalStore base class
that both persistence backends build on.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger("questlog.journal")

PRESET_COLORS = [
    "#10b981",  # emerald
    "#3b82f6",  # blue
    "#f59e0b",  # amber
    "#ef4444",  # red
    "#8b5cf6",  # violet
    "#ec4899",  # pink
    "#06b6d4",  # cyan
]
DEFAULT_COLOR = PRESET_COLORS[0]

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"
GOAL_STATUSES = (PENDING, COMPLETED, FAILED)

XP_PER_LEVEL = 100
NOTE_XP = 5
GOAL_XP = 10
GOAL_COMPLETED_XP = 50
SUBTASK_COMPLETED_XP = 10
BREAKDOWN_XP = 20

BREAKDOWN_PENDING = "pending"
BREAKDOWN_SUCCEEDED = "succeeded"
BREAKDOWN_FAILED = "failed"


# Errors


class JournalError(Exception):
    """Base class for journal failures."""


class ValidationError(JournalError):
    """A required field is missing or a value is out of range."""


class ExternalServiceError(JournalError):
    """The generative-text collaborator failed or returned garbage."""


class PersistenceError(JournalError):
    """The backing storage is unavailable or corrupt."""


class BreakdownInProgressError(JournalError):
    """A breakdown for the same goal is already running."""


# Entity builders


def now_iso():
    """Return the current local time as an ISO-8601 string."""
    return datetime.now().isoformat()


def make_note(note_id, content, created_at):
    return {"id": note_id, "content": content, "created_at": created_at}


def make_goal(
    goal_id, title, description, status, color, created_at, subtasks=None
):
    return {
        "id": goal_id,
        "title": title,
        "description": description or "",
        "status": status,
        "color": color,
        "created_at": created_at,
        "subtasks": list(subtasks or []),
    }


def make_subtask(subtask_id, goal_id, title, completed, color):
    return {
        "id": subtask_id,
        "goal_id": goal_id,
        "title": title,
        "completed": bool(completed),
        "color": color,
    }


def make_stats(xp=0, level=1):
    return {"xp": xp, "level": level}


def newest_first(records):
    """Sort notes or goals by creation time, newest first, id breaking ties."""
    return sorted(
        records, key=lambda r: (r["created_at"] or "", r["id"]), reverse=True
    )


# XP rules


def roll_over(stats, amount):
    """
    Add XP to a stats record and convert each full 100 into a level.
    Returns a new stats dict; the input is left untouched.
    """
    levels, xp = divmod(stats["xp"] + amount, XP_PER_LEVEL)
    return make_stats(xp, stats["level"] + levels)


def goal_update_xp(previous, fields):
    """XP earned by applying `fields` to a goal.

    Completing a goal pays out on every call that sets the status, even when
    the goal was already completed.
    """
    if fields.get("status") == COMPLETED:
        return GOAL_COMPLETED_XP
    return 0


def subtask_update_xp(previous, fields):
    """XP earned by applying `fields` to a subtask (only false -> true pays)."""
    if fields.get("completed") and not previous["completed"]:
        return SUBTASK_COMPLETED_XP
    return 0


# Validation


def require_text(value, name):
    """Return `value` if it is a non-blank string, else raise ValidationError."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name.capitalize()} is required")
    return value


def require_string(value, name):
    if not isinstance(value, str):
        raise ValidationError(f"{name.capitalize()} must be a string")
    return value


def optional_text(value, name, default=""):
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValidationError(f"{name.capitalize()} must be a string")
    return value


def validate_status(status):
    if status not in GOAL_STATUSES:
        raise ValidationError("Invalid status")
    return status


def validate_xp_amount(amount):
    # bool is an int subclass; True is not a meaningful XP amount
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise ValidationError("Amount must be a non-negative integer")
    return amount


def coerce_completed(value):
    """Accept JSON booleans and the 0/1 integers older clients send."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValidationError("Completed must be a boolean")


# Partial updates


class _Unset:
    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


UNSET = _Unset()


def _present(update, names):
    return {
        name: getattr(update, name)
        for name in names
        if getattr(update, name) is not UNSET
    }


@dataclass
class GoalUpdate:
    """Fields to change on a goal; anything left UNSET is not touched."""

    status: object = UNSET
    color: object = UNSET
    title: object = UNSET
    description: object = UNSET

    FIELDS = ("status", "color", "title", "description")

    @classmethod
    def from_json(cls, data):
        data = data or {}
        return cls(**{k: data[k] for k in cls.FIELDS if k in data})

    def validated(self):
        """Return the present fields as a dict, raising on bad values."""
        fields = _present(self, self.FIELDS)
        if "status" in fields:
            validate_status(fields["status"])
        if "title" in fields:
            require_text(fields["title"], "title")
        if "color" in fields:
            require_string(fields["color"], "color")
        if "description" in fields:
            fields["description"] = optional_text(
                fields["description"], "description"
            )
        return fields


@dataclass
class SubtaskUpdate:
    """Fields to change on a subtask; anything left UNSET is not touched."""

    completed: object = UNSET
    color: object = UNSET
    title: object = UNSET

    FIELDS = ("completed", "color", "title")

    @classmethod
    def from_json(cls, data):
        data = data or {}
        return cls(**{k: data[k] for k in cls.FIELDS if k in data})

    def validated(self):
        fields = _present(self, self.FIELDS)
        if "completed" in fields:
            fields["completed"] = coerce_completed(fields["completed"])
        if "title" in fields:
            require_text(fields["title"], "title")
        if "color" in fields:
            require_string(fields["color"], "color")
        return fields


# Snapshots


def _record_id(record, kind, seen):
    record_id = record.get("id")
    if isinstance(record_id, bool) or not isinstance(record_id, int):
        raise ValidationError(f"Every {kind} needs an integer id")
    if record_id in seen:
        raise ValidationError(f"Duplicate {kind} id {record_id}")
    seen.add(record_id)
    return record_id


def _record_list(data, key):
    records = data.get(key)
    if records is None:
        return []
    if not isinstance(records, list):
        raise ValidationError(f"'{key}' must be a list")
    for record in records:
        if not isinstance(record, dict):
            raise ValidationError(f"Every entry in '{key}' must be an object")
    return records


def _record_string(record, key, default):
    value = record.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a string")
    return value or default


def _parse_subtask(record, goal_id, seen):
    if isinstance(record.get("id"), float):
        # Browser backups gave AI subtasks fractional ids; renumbered later
        record_id = None
    else:
        record_id = _record_id(record, "subtask", seen)
    return make_subtask(
        record_id,
        goal_id,
        require_text(record.get("title"), "subtask title"),
        coerce_completed(record.get("completed", False)),
        _record_string(record, "color", DEFAULT_COLOR),
    )


def parse_snapshot(data, imported_at=None):
    """
    Validate a backup document and return it in canonical form.

    Accepts goals with nested `subtasks` as well as the flat top-level
    `subtasks` list written by older exports. Defaults are filled per record.
    Raises ValidationError for anything malformed; nothing is partially kept.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid backup file")
    imported_at = imported_at or now_iso()

    notes = []
    seen = set()
    for record in _record_list(data, "notes"):
        notes.append(
            make_note(
                _record_id(record, "note", seen),
                require_text(record.get("content"), "note content"),
                _record_string(record, "created_at", imported_at),
            )
        )

    goals = []
    goals_by_id = {}
    seen = set()
    subtask_ids = set()
    for record in _record_list(data, "goals"):
        goal_id = _record_id(record, "goal", seen)
        status = record.get("status") or PENDING
        validate_status(status)
        nested = record.get("subtasks")
        if nested is not None and not isinstance(nested, list):
            raise ValidationError("Goal subtasks must be a list")
        subtasks = []
        for sub in nested or []:
            if not isinstance(sub, dict):
                raise ValidationError("Every subtask must be an object")
            subtasks.append(_parse_subtask(sub, goal_id, subtask_ids))
        goal = make_goal(
            goal_id,
            require_text(record.get("title"), "goal title"),
            optional_text(record.get("description"), "description"),
            status,
            _record_string(record, "color", DEFAULT_COLOR),
            _record_string(record, "created_at", imported_at),
            subtasks,
        )
        goals.append(goal)
        goals_by_id[goal_id] = goal

    for record in _record_list(data, "subtasks"):
        goal_id = record.get("goal_id")
        if isinstance(goal_id, bool) or not isinstance(goal_id, int):
            raise ValidationError("Every subtask needs an integer goal_id")
        owner = goals_by_id.get(goal_id)
        if owner is None:
            raise ValidationError("Subtask refers to an unknown goal")
        owner["subtasks"].append(_parse_subtask(record, owner["id"], subtask_ids))

    next_id = max(subtask_ids, default=0) + 1
    for goal in goals:
        for subtask in goal["subtasks"]:
            if subtask["id"] is None:
                subtask["id"] = next_id
                next_id += 1

    raw_stats = data.get("stats")
    if raw_stats is None:
        stats = make_stats()
    else:
        if not isinstance(raw_stats, dict):
            raise ValidationError("'stats' must be an object")
        xp = raw_stats.get("xp", 0)
        level = raw_stats.get("level", 1)
        for value in (xp, level):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError("Stats must be integers")
        if xp < 0 or level < 1:
            raise ValidationError("Stats out of range")
        stats = roll_over(make_stats(0, level), xp)

    return {"notes": notes, "goals": goals, "stats": stats}


# Store


class JournalStore:
    """
    Business rules shared by every backend.

    Subclasses supply the storage primitives (the methods raising
    NotImplementedError below). Each primitive that takes an `xp` argument or
    an XP rule must credit that XP in the same write as the mutation.
    """

    def __init__(self, task_generator=None):
        self.task_generator = task_generator
        self._breakdown_lock = threading.Lock()
        self._breakdowns = {}

    # Storage primitives

    def list_notes(self):
        raise NotImplementedError

    def delete_note(self, note_id):
        raise NotImplementedError

    def list_goals(self):
        raise NotImplementedError

    def get_goal(self, goal_id):
        raise NotImplementedError

    def get_subtask(self, subtask_id):
        raise NotImplementedError

    def delete_subtask(self, subtask_id):
        raise NotImplementedError

    def get_stats(self):
        raise NotImplementedError

    def _insert_note(self, content, created_at, xp):
        raise NotImplementedError

    def _insert_goal(self, title, description, color, created_at, xp):
        raise NotImplementedError

    def _update_goal(self, goal_id, fields, xp_rule):
        raise NotImplementedError

    def _delete_goal(self, goal_id):
        raise NotImplementedError

    def _insert_subtasks(self, goal_id, titles, color, xp):
        """Append subtasks to a goal; `color=None` means the goal's color.

        Returns the new subtasks, or None when the goal does not exist.
        """
        raise NotImplementedError

    def _update_subtask(self, subtask_id, fields, xp_rule):
        raise NotImplementedError

    def _credit_xp(self, amount):
        raise NotImplementedError

    def _replace_all(self, snapshot):
        raise NotImplementedError

    # Notes

    def create_note(self, content):
        """Create a note and credit XP for it."""
        require_text(content, "content")
        note = self._insert_note(content, now_iso(), NOTE_XP)
        logger.debug("Created note %s", note["id"])
        return note

    # Goals

    def create_goal(self, title, description=None, color=None):
        """Create a pending goal with no subtasks and credit XP for it."""
        require_text(title, "title")
        description = optional_text(description, "description")
        color = optional_text(color, "color", default=DEFAULT_COLOR) or DEFAULT_COLOR
        goal = self._insert_goal(title, description, color, now_iso(), GOAL_XP)
        logger.debug("Created goal %s", goal["id"])
        return goal

    def update_goal(self, goal_id, update):
        """Apply a GoalUpdate. Returns the goal, or None for an unknown id."""
        fields = update.validated()
        if not fields:
            return self.get_goal(goal_id)
        return self._update_goal(goal_id, fields, goal_update_xp)

    def delete_goal(self, goal_id):
        """Delete a goal with its subtasks and forget its breakdown status."""
        self._delete_goal(goal_id)
        self._forget_breakdowns([goal_id])

    # Subtasks

    def create_subtask(self, goal_id, title, color=None):
        """Append a subtask to an existing goal."""
        require_text(title, "title")
        color = optional_text(color, "color", default=None) or None
        created = self._insert_subtasks(goal_id, [title], color, 0)
        if created is None:
            raise ValidationError("Goal not found")
        return created[0]

    def add_manual_subtask(self, goal_id, title):
        """Subtask typed into the inline composer; inherits the goal's color."""
        return self.create_subtask(goal_id, title)

    def update_subtask(self, subtask_id, update):
        """Apply a SubtaskUpdate. Returns the subtask, or None for an unknown id."""
        fields = update.validated()
        if not fields:
            return self.get_subtask(subtask_id)
        return self._update_subtask(subtask_id, fields, subtask_update_xp)

    # Breakdown

    def breakdown_status(self, goal_id):
        """Return {"state", "error"} for the last breakdown of a goal, or None."""
        with self._breakdown_lock:
            status = self._breakdowns.get(goal_id)
            return dict(status) if status else None

    def _set_breakdown(self, goal_id, state, error=None):
        with self._breakdown_lock:
            self._breakdowns[goal_id] = {"state": state, "error": error}

    def _forget_breakdowns(self, goal_ids=None):
        """Drop finished breakdown states; `None` means every goal."""
        with self._breakdown_lock:
            for goal_id in list(self._breakdowns if goal_ids is None else goal_ids):
                status = self._breakdowns.get(goal_id)
                if status and status["state"] != BREAKDOWN_PENDING:
                    del self._breakdowns[goal_id]

    def breakdown_goal(self, goal_id):
        """
        Ask the task generator to split a goal into subtasks.

        All proposed subtasks and the XP bonus are written together, or
        nothing is written. Only one breakdown per goal may run at a time.
        """
        from breakdown import build_prompt, parse_task_list

        goal = self.get_goal(goal_id)
        if goal is None:
            raise ValidationError("Goal not found")

        with self._breakdown_lock:
            current = self._breakdowns.get(goal_id)
            if current and current["state"] == BREAKDOWN_PENDING:
                raise BreakdownInProgressError(
                    "A breakdown for this goal is already running"
                )
            self._breakdowns[goal_id] = {"state": BREAKDOWN_PENDING, "error": None}

        try:
            if self.task_generator is None:
                raise ExternalServiceError("AI breakdown is not configured")
            text = self.task_generator.generate(
                build_prompt(goal["title"], goal["description"])
            )
            titles = parse_task_list(text)
            created = self._insert_subtasks(goal_id, titles, None, BREAKDOWN_XP)
            if created is None:
                raise ValidationError("Goal not found")
        except JournalError as exc:
            logger.warning("Breakdown of goal %s failed: %s", goal_id, exc)
            self._set_breakdown(goal_id, BREAKDOWN_FAILED, str(exc))
            raise
        except Exception as exc:
            logger.exception("Breakdown of goal %s failed", goal_id)
            self._set_breakdown(goal_id, BREAKDOWN_FAILED, str(exc))
            raise ExternalServiceError(f"AI breakdown failed: {exc}") from exc

        self._set_breakdown(goal_id, BREAKDOWN_SUCCEEDED)
        logger.info("Broke goal %s into %d subtasks", goal_id, len(created))
        return created

    # Stats

    def add_xp(self, amount):
        """Credit XP and return the normalized stats."""
        validate_xp_amount(amount)
        return self._credit_xp(amount)

    # Backup

    def export_all(self):
        """Snapshot of every collection; goals carry their subtasks."""
        return {
            "notes": self.list_notes(),
            "goals": self.list_goals(),
            "stats": self.get_stats(),
        }

    def import_all(self, data):
        """Replace everything with the contents of a backup document."""
        snapshot = parse_snapshot(data)
        self._replace_all(snapshot)
        self._forget_breakdowns()
        logger.info(
            "Imported %d notes and %d goals",
            len(snapshot["notes"]),
            len(snapshot["goals"]),
        )
        return snapshot

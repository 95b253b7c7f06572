"""
Environment-driven configuration for QuestLog.
"""

import logging
import os

import db

logger = logging.getLogger("questlog.config")

SQLITE_BACKEND = "sqlite"
LOCAL_BACKEND = "local"


class Config:
    """Settings read from the environment when the object is created."""

    def __init__(self, environ=None):
        env = os.environ if environ is None else environ
        self.BACKEND = env.get("QUESTLOG_BACKEND", SQLITE_BACKEND).lower()
        self.DB_PATH = env.get("QUESTLOG_DB_PATH", db.DEFAULT_DATABASE_PATH)
        self.LOCAL_PATH = env.get("QUESTLOG_LOCAL_PATH", "questlog.json")
        self.GEMINI_API_KEY = env.get("GEMINI_API_KEY", "")
        self.GEMINI_MODEL = env.get("QUESTLOG_GEMINI_MODEL", "gemini-2.5-flash")
        self.HOST = env.get("QUESTLOG_HOST", "127.0.0.1")
        self.PORT = int(env.get("QUESTLOG_PORT", "3000"))
        self.LOG_LEVEL = env.get("LOG_LEVEL", "INFO").upper()
        self.MAX_CONTENT_LENGTH = 10 * 1024 * 1024


def build_task_generator(config):
    """Gemini generator when an API key is configured, otherwise None."""
    if not config.GEMINI_API_KEY:
        logger.info("GEMINI_API_KEY not set; AI breakdown disabled")
        return None
    from breakdown import GeminiTaskGenerator

    return GeminiTaskGenerator(config.GEMINI_API_KEY, model=config.GEMINI_MODEL)


def build_store(config):
    """Construct the journal store selected by QUESTLOG_BACKEND."""
    generator = build_task_generator(config)
    if config.BACKEND == LOCAL_BACKEND:
        from local_store import JsonFileStorage, LocalJournalStore

        return LocalJournalStore(
            JsonFileStorage(config.LOCAL_PATH), task_generator=generator
        )
    if config.BACKEND == SQLITE_BACKEND:
        from sqlite_store import SQLiteJournalStore

        return SQLiteJournalStore(config.DB_PATH, task_generator=generator)
    raise ValueError(f"Unknown QUESTLOG_BACKEND: {config.BACKEND}")

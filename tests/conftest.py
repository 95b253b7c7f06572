"""Shared fixtures: both journal backends and a scripted task generator."""

from __future__ import annotations

from pathlib import Path

import pytest

from breakdown import TaskGenerator
from local_store import LocalJournalStore, MemoryStorage
from sqlite_store import SQLiteJournalStore


class StubGenerator(TaskGenerator):
    """Returns a canned response (or raises) and records every prompt."""

    def __init__(self) -> None:
        self.response = '["Buy a guitar", "Learn chords", "Practice daily"]'
        self.error: Exception | None = None
        self.on_generate = None
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.on_generate is not None:
            self.on_generate()
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def generator() -> StubGenerator:
    return StubGenerator()


def build_store(kind: str, tmp_path: Path, generator: TaskGenerator | None):
    if kind == "sqlite":
        return SQLiteJournalStore(str(tmp_path / "questlog.db"), task_generator=generator)
    return LocalJournalStore(MemoryStorage(), task_generator=generator)


@pytest.fixture(params=["sqlite", "local"])
def store(request, tmp_path: Path, generator: StubGenerator):
    return build_store(request.param, tmp_path, generator)


@pytest.fixture
def sqlite_store(tmp_path: Path, generator: StubGenerator) -> SQLiteJournalStore:
    return build_store("sqlite", tmp_path, generator)

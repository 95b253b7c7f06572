"""
AI goal breakdown for QuestLog.
Builds the prompt, calls Gemini through the google-genai SDK and turns the
reply into a list of subtask titles.
"""

import json
import logging
from abc import ABC, abstractmethod

from google import genai
from google.genai import types

from journal import ExternalServiceError

logger = logging.getLogger("questlog.breakdown")

DEFAULT_MODEL = "gemini-2.5-flash"

BREAKDOWN_PROMPT = (
    "Break down the following goal into 3-5 actionable sub-tasks. "
    'Return only a JSON array of strings. Goal: "{title}" Description: "{description}"'
)


def build_prompt(title, description=""):
    """Fill the breakdown prompt for one goal."""
    return BREAKDOWN_PROMPT.format(title=title, description=description or "")


def parse_task_list(text):
    """
    Parse generator output into subtask titles.
    Anything other than a non-empty JSON array of non-blank strings is an
    ExternalServiceError.
    """
    try:
        tasks = json.loads(text or "")
    except (json.JSONDecodeError, TypeError) as exc:
        raise ExternalServiceError("AI breakdown returned invalid JSON") from exc

    if not isinstance(tasks, list) or not tasks:
        raise ExternalServiceError("AI breakdown did not return a list of tasks")
    titles = []
    for task in tasks:
        if not isinstance(task, str) or not task.strip():
            raise ExternalServiceError("AI breakdown returned a malformed task")
        titles.append(task.strip())
    return titles


class TaskGenerator(ABC):
    """Anything that turns a prompt into text."""

    @abstractmethod
    def generate(self, prompt):
        """Return the raw response text for `prompt`."""


class GeminiTaskGenerator(TaskGenerator):
    """Gemini-backed generator asking for a JSON array of strings."""

    def __init__(self, api_key, model=DEFAULT_MODEL, client=None):
        self.model = model
        self.client = client or genai.Client(api_key=api_key)

    def generate(self, prompt):
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=types.Schema(
                type=types.Type.ARRAY,
                items=types.Schema(type=types.Type.STRING),
            ),
        )
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=prompt,
                config=config,
            )
        except Exception as exc:
            logger.error("Gemini call failed: %s", exc)
            raise ExternalServiceError(f"AI breakdown failed: {exc}") from exc
        return response.text or "[]"

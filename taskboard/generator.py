"""
Generative-text collaborator for task drafting and enhancement.

Two calls:
  - enhance_task(title, description) -> Enhancement
      improved title/description, acceptance criteria, tags, story points
  - generate_tasks(text) -> [TaskDraft]
      structured drafts from freeform pasted text

Responses are validated strictly at this boundary. A missing key, a wrong
type, or a story point estimate outside 1/2/3/5/8/13 fails the whole call with
GenerationError; nothing partial is returned.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

from .schema import Priority, STORY_POINTS, unique_tags

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

SYSTEM_INSTRUCTION = (
    "You are a helpful assistant that improves Jira tickets. Be concise but thorough."
)

ENHANCE_PROMPT = """You are an expert Agile Product Manager. Please analyze the following task draft and enhance it.

Current Title: "{title}"
Current Description: "{description}"

Provide a more professional title, a structured description (User Story format), acceptance criteria, relevant tags, and story point estimation."""

BULK_PROMPT = """You are an expert Agile Product Manager. Turn the following pasted notes into a list of well-formed tasks.

Notes:
{text}

Return one task per distinct piece of work. For each task give a concise action-oriented title, a short description, a priority (Low, Medium, High or Critical), 1-3 short tags, and a story point estimate."""

ENHANCE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "improvedTitle": {"type": "STRING", "description": "A concise, action-oriented title for the task."},
        "improvedDescription": {"type": "STRING", "description": "A professional, detailed description of the task using agile user story format if applicable."},
        "acceptanceCriteria": {"type": "ARRAY", "items": {"type": "STRING"}, "description": "A list of 3-5 clear acceptance criteria."},
        "suggestedTags": {"type": "ARRAY", "items": {"type": "STRING"}, "description": "A list of 2-4 relevant short tags (e.g., 'Frontend', 'Bug', 'Optimization')."},
        "estimatedStoryPoints": {"type": "INTEGER", "description": "Fibonacci number estimation (1, 2, 3, 5, 8, 13) based on complexity."},
    },
    "required": ["improvedTitle", "improvedDescription", "acceptanceCriteria", "suggestedTags", "estimatedStoryPoints"],
}

BULK_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "title": {"type": "STRING"},
            "description": {"type": "STRING"},
            "priority": {"type": "STRING", "enum": [p.value for p in Priority]},
            "tags": {"type": "ARRAY", "items": {"type": "STRING"}},
            "storyPoints": {"type": "INTEGER"},
        },
        "required": ["title"],
    },
}


class GenerationError(Exception):
    """The generator call failed or returned something unusable."""
    pass


@dataclass(frozen=True)
class TaskDraft:
    """A task-to-be, before it has an id or a timestamp."""
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    tags: Tuple[str, ...] = ()
    story_points: Optional[int] = None


@dataclass(frozen=True)
class Enhancement:
    title: str
    description: str
    acceptance_criteria: Tuple[str, ...]
    tags: Tuple[str, ...]
    story_points: int


# ── Response validation ───────────────────────────────────────────────────────


def decode_json(text: Optional[str]) -> Any:
    """Parse a JSON reply, tolerating a surrounding markdown code fence."""
    if not text or not text.strip():
        raise GenerationError("No response from generator")
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r'^```(?:json)?\s*', '', text)
        text = re.sub(r'\s*```$', '', text)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Generator returned invalid JSON: {e}") from e


def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise GenerationError(f"'{key}' must be a string")
    return value


def _require_str_list(data: Dict[str, Any], key: str) -> List[str]:
    value = data.get(key)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise GenerationError(f"'{key}' must be a list of strings")
    return value


def _story_points(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value not in STORY_POINTS:
        raise GenerationError(f"story points must be one of {STORY_POINTS}, got {value!r}")
    return value


def parse_enhancement(payload: Any) -> Enhancement:
    """Validate an enhancement payload. Every field is required."""
    if not isinstance(payload, dict):
        raise GenerationError("Enhancement must be a JSON object")
    title = _require_str(payload, "improvedTitle").strip()
    if not title:
        raise GenerationError("'improvedTitle' is empty")
    if "estimatedStoryPoints" not in payload:
        raise GenerationError("'estimatedStoryPoints' is missing")
    return Enhancement(
        title=title,
        description=_require_str(payload, "improvedDescription"),
        acceptance_criteria=tuple(_require_str_list(payload, "acceptanceCriteria")),
        tags=unique_tags(_require_str_list(payload, "suggestedTags")),
        story_points=_story_points(payload["estimatedStoryPoints"]),
    )


def parse_task_drafts(payload: Any) -> List[TaskDraft]:
    """
    Validate a bulk-generation payload: a list of task objects.

    title is required; description, priority, tags and storyPoints are
    optional but must be well-formed when present. A {"tasks": [...]} wrapper
    is accepted.
    """
    if isinstance(payload, dict) and "tasks" in payload:
        payload = payload["tasks"]
    if not isinstance(payload, list):
        raise GenerationError("Task list must be a JSON array")

    drafts = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            raise GenerationError(f"Task #{index} is not an object")
        title = _require_str(item, "title").strip()
        if not title:
            raise GenerationError(f"Task #{index} has an empty title")

        description = item.get("description")
        if description is None:
            description = ""
        elif not isinstance(description, str):
            raise GenerationError(f"Task #{index}: 'description' must be a string")

        priority = Priority.MEDIUM
        if item.get("priority") is not None:
            try:
                priority = Priority(item["priority"])
            except ValueError:
                raise GenerationError(f"Task #{index}: unknown priority {item['priority']!r}")

        tags: Tuple[str, ...] = ()
        if item.get("tags") is not None:
            tags = unique_tags(_require_str_list(item, "tags"))

        story_points = None
        if item.get("storyPoints") is not None:
            story_points = _story_points(item["storyPoints"])

        drafts.append(TaskDraft(
            title=title,
            description=description,
            priority=priority,
            tags=tags,
            story_points=story_points,
        ))
    return drafts


# ── Generator clients ─────────────────────────────────────────────────────────


class TextGenerator:
    """Interface for the text-completion collaborator."""

    def enhance_task(self, title: str, description: str = "") -> Enhancement:
        raise NotImplementedError

    def generate_tasks(self, text: str) -> List[TaskDraft]:
        raise NotImplementedError


class GeminiGenerator(TextGenerator):
    """Calls the Generative Language REST API with a JSON response schema."""

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash", timeout: float = 30,
                 session: Optional[requests.Session] = None):
        if not api_key:
            raise GenerationError("No API key configured for the text generator")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def _generate(self, prompt: str, schema: Dict[str, Any]) -> Any:
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }
        try:
            r = self.session.post(
                GEMINI_URL.format(model=self.model),
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise GenerationError(f"Generator request failed: {e}") from e
        if not r.ok:
            raise GenerationError(f"Generator returned {r.status_code}: {r.text[:200]}")
        try:
            text = r.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise GenerationError(f"Unexpected generator response shape: {e}") from e
        return decode_json(text)

    def enhance_task(self, title: str, description: str = "") -> Enhancement:
        prompt = ENHANCE_PROMPT.format(title=title, description=description)
        try:
            return parse_enhancement(self._generate(prompt, ENHANCE_SCHEMA))
        except GenerationError as e:
            logger.error(f"AI enhancement failed: {e}")
            raise

    def generate_tasks(self, text: str) -> List[TaskDraft]:
        prompt = BULK_PROMPT.format(text=text[:8000])
        try:
            return parse_task_drafts(self._generate(prompt, BULK_SCHEMA))
        except GenerationError as e:
            logger.error(f"AI task generation failed: {e}")
            raise

"""
Tests for the generative-text collaborator: response validation and the
Gemini REST client (HTTP mocked).
"""
import json
from unittest.mock import MagicMock

import pytest
import requests

from taskboard.generator import (
    ENHANCE_SCHEMA, GEMINI_URL,
    GeminiGenerator, GenerationError,
    decode_json, parse_enhancement, parse_task_drafts,
)
from taskboard.schema import Priority

GOOD_ENHANCEMENT = {
    "improvedTitle": "Fix login redirect",
    "improvedDescription": "As a user, I want to land on my dashboard after login.",
    "acceptanceCriteria": ["Redirects to dashboard", "Keeps deep links"],
    "suggestedTags": ["Auth", "Bug"],
    "estimatedStoryPoints": 3,
}


def gemini_reply(payload, status=200):
    response = MagicMock()
    response.ok = status < 400
    response.status_code = status
    response.text = "error body"
    response.json.return_value = {
        "candidates": [{"content": {"parts": [{"text": json.dumps(payload)}]}}]
    }
    return response


def make_generator(response=None, error=None):
    session = MagicMock()
    if error is not None:
        session.post.side_effect = error
    else:
        session.post.return_value = response
    return GeminiGenerator("test-key", model="gemini-test", timeout=5, session=session), session


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Validation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_decode_json_strips_code_fence():
    assert decode_json('```json\n{"a": 1}\n```') == {"a": 1}


@pytest.mark.parametrize("text", ["", "   ", None, "not json"])
def test_decode_json_rejects_garbage(text):
    with pytest.raises(GenerationError):
        decode_json(text)


def test_parse_enhancement():
    enhancement = parse_enhancement(GOOD_ENHANCEMENT)
    assert enhancement.title == "Fix login redirect"
    assert enhancement.acceptance_criteria == ("Redirects to dashboard", "Keeps deep links")
    assert enhancement.tags == ("Auth", "Bug")
    assert enhancement.story_points == 3


@pytest.mark.parametrize("key", sorted(GOOD_ENHANCEMENT))
def test_parse_enhancement_requires_every_key(key):
    payload = {k: v for k, v in GOOD_ENHANCEMENT.items() if k != key}
    with pytest.raises(GenerationError):
        parse_enhancement(payload)


@pytest.mark.parametrize("points", [4, 0, 21, "3", True, None])
def test_parse_enhancement_rejects_bad_story_points(points):
    with pytest.raises(GenerationError, match="story points"):
        parse_enhancement({**GOOD_ENHANCEMENT, "estimatedStoryPoints": points})


def test_parse_enhancement_rejects_wrong_types():
    with pytest.raises(GenerationError, match="acceptanceCriteria"):
        parse_enhancement({**GOOD_ENHANCEMENT, "acceptanceCriteria": "just one"})


def test_parse_task_drafts():
    drafts = parse_task_drafts([
        {"title": "Set up CI", "priority": "High", "tags": ["DevOps"], "storyPoints": 5},
        {"title": "Write README"},
    ])
    assert drafts[0].priority is Priority.HIGH
    assert drafts[0].story_points == 5
    assert drafts[1].priority is Priority.MEDIUM
    assert drafts[1].description == ""


def test_parse_task_drafts_accepts_wrapper():
    assert [d.title for d in parse_task_drafts({"tasks": [{"title": "One"}]})] == ["One"]


@pytest.mark.parametrize("item", [
    {"title": ""},
    {"description": "no title"},
    {"title": "x", "priority": "Urgent"},
    {"title": "x", "storyPoints": 7},
    {"title": "x", "tags": "not-a-list"},
    "just a string",
])
def test_parse_task_drafts_rejects_malformed(item):
    with pytest.raises(GenerationError):
        parse_task_drafts([{"title": "fine"}, item])


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Gemini client
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_generator_requires_api_key():
    with pytest.raises(GenerationError, match="No API key"):
        GeminiGenerator("")


def test_enhance_task_request_shape():
    generator, session = make_generator(gemini_reply(GOOD_ENHANCEMENT))
    enhancement = generator.enhance_task("login", "broken redirect")

    assert enhancement.story_points == 3
    args, kwargs = session.post.call_args
    assert args[0] == GEMINI_URL.format(model="gemini-test")
    assert kwargs["params"] == {"key": "test-key"}
    assert kwargs["timeout"] == 5
    config = kwargs["json"]["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert config["responseSchema"] == ENHANCE_SCHEMA
    prompt = kwargs["json"]["contents"][0]["parts"][0]["text"]
    assert '"login"' in prompt and '"broken redirect"' in prompt


def test_generate_tasks():
    generator, _ = make_generator(gemini_reply([{"title": "A"}, {"title": "B"}]))
    assert [d.title for d in generator.generate_tasks("a and b")] == ["A", "B"]


def test_http_error_becomes_generation_error():
    generator, _ = make_generator(gemini_reply({}, status=500))
    with pytest.raises(GenerationError, match="500"):
        generator.enhance_task("x")


def test_network_error_becomes_generation_error():
    generator, _ = make_generator(error=requests.ConnectionError("offline"))
    with pytest.raises(GenerationError, match="offline"):
        generator.generate_tasks("x")


def test_unexpected_response_shape():
    response = gemini_reply({})
    response.json.return_value = {"candidates": []}
    generator, _ = make_generator(response)
    with pytest.raises(GenerationError, match="shape"):
        generator.enhance_task("x")

"""
Text import: turn pasted text into task drafts.

Naive mode makes one draft per non-empty line, dropping list markers such as
"- ", "* ", "• " or "1. ". Delegated mode hands the whole text to the
text generator and returns its structured drafts.
"""
import re
from typing import List, Optional

from .generator import GenerationError, TaskDraft, TextGenerator

LIST_MARKER = re.compile(r"^[-*•\d.]+\s+")


def strip_marker(line: str) -> str:
    return LIST_MARKER.sub("", line.strip(), count=1)


def parse_lines(text: str) -> List[TaskDraft]:
    """One draft per non-empty line, markers stripped, order preserved."""
    drafts = []
    for line in (text or "").splitlines():
        line = line.strip()
        if not line:
            continue
        title = strip_marker(line)
        if title:
            drafts.append(TaskDraft(title=title))
    return drafts


def drafts_from_text(text: str, use_ai: bool = False,
                     generator: Optional[TextGenerator] = None) -> List[TaskDraft]:
    """
    Convert pasted text into drafts.

    Blank input yields no drafts in either mode. In AI mode a missing
    generator is a GenerationError, same as a failed call.
    """
    if not text or not text.strip():
        return []
    if not use_ai:
        return parse_lines(text)
    if generator is None:
        raise GenerationError("AI import requested but no text generator is configured")
    return generator.generate_tasks(text)

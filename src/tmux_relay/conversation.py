"""Extract the latest question/answer exchange from captured pane text.

The assistant's terminal UI is not a protocol, so extraction is a set of line
heuristics applied from the bottom of the capture upwards:

    PROMPT     ``> text`` or ``❯ text``; the user's submitted input
    RESPONSE   ``⏺ text`` or ``● text``; start of an assistant output block
    SEPARATOR  a long horizontal rule; the input box is drawn between two
    STATUS     spinner lines and the ``esc to interrupt`` hint

Everything below the final input box is UI chrome and is discarded.
"""

from __future__ import annotations

import re
import textwrap
from dataclasses import dataclass

from .tmux.utils import strip_ansi

SEPARATOR_PATTERN = re.compile(r"^[\s╭╮╰╯├┤│]*[─━═]{10,}[\s╭╮╰╯├┤│]*$")
PROMPT_PATTERN = re.compile(r"^\s*[│]?\s*[>❯]\s?(.*)$")
RESPONSE_MARKER_PATTERN = re.compile(r"^(\s*)[⏺●]\s?")
STATUS_PATTERN = re.compile(
    r"esc to interrupt|^\s*[✻✽✶✳✢·*]\s+\w+(?:ing)?…|^\s*\?\s+for shortcuts",
    re.IGNORECASE,
)

# Rules that close an input box sit within a few lines of the opening rule.
_INPUT_BOX_MAX_LINES = 6

_USER_REQUEST_RE = re.compile(r"User request:\s*(.+?)(?:\s*⎿|$)", re.DOTALL)
_THREAD_CONTEXT_RE = re.compile(
    r"\[Thread Conversation Context\]\s*User:\s*(.+?)\s*\[End of Thread", re.DOTALL
)


@dataclass(slots=True)
class ConversationSnapshot:
    """Point-in-time view of the last exchange in a pane."""

    user_question: str = ""
    claude_response: str = ""
    full_trace: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.user_question or self.claude_response)

    def as_metadata(self) -> dict[str, str]:
        payload = {
            "userQuestion": self.user_question,
            "claudeResponse": self.claude_response,
        }
        if self.full_trace:
            payload["fullExecutionTrace"] = self.full_trace
        return payload


def _is_separator(line: str) -> bool:
    return bool(SEPARATOR_PATTERN.match(line))


def _clean_lines(content: str) -> list[str]:
    return [line.rstrip() for line in strip_ansi(content).replace("\r", "").split("\n")]


def strip_input_box(lines: list[str]) -> list[str]:
    """Drop the trailing input box and any chrome rendered below it."""

    separators = [index for index, line in enumerate(lines) if _is_separator(line)]
    if not separators:
        return list(lines)
    cut = separators[-1]
    if len(separators) >= 2 and cut - separators[-2] <= _INPUT_BOX_MAX_LINES:
        cut = separators[-2]
    return lines[:cut]


def clean_user_question(raw: str) -> str:
    """Remove relay wrappers from a prompt echoed back by the assistant."""

    if not raw:
        return ""
    cleaned = raw.strip()
    match = _USER_REQUEST_RE.search(cleaned)
    if match:
        return match.group(1).strip()
    match = _THREAD_CONTEXT_RE.search(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def _find_last_prompt(lines: list[str]) -> int | None:
    for index in range(len(lines) - 1, -1, -1):
        match = PROMPT_PATTERN.match(lines[index])
        if match and match.group(1).strip():
            return index
    return None


def _collect_question(lines: list[str], start: int) -> tuple[str, int]:
    match = PROMPT_PATTERN.match(lines[start])
    parts = [match.group(1).strip()] if match else []
    index = start + 1
    # Long prompts wrap onto indented continuation lines.
    while index < len(lines):
        line = lines[index]
        if not line.strip() or RESPONSE_MARKER_PATTERN.match(line) or not line[:1].isspace():
            break
        parts.append(line.strip())
        index += 1
    return " ".join(parts), index


def _collect_response(lines: list[str]) -> str:
    kept: list[str] = []
    for line in lines:
        if STATUS_PATTERN.search(line) or _is_separator(line):
            continue
        kept.append(RESPONSE_MARKER_PATTERN.sub(r"\1  ", line, count=1))

    while kept and not kept[0].strip():
        kept.pop(0)
    while kept and not kept[-1].strip():
        kept.pop()

    collapsed: list[str] = []
    for line in kept:
        if not line.strip() and collapsed and not collapsed[-1].strip():
            continue
        collapsed.append(line)
    return textwrap.dedent("\n".join(collapsed)).strip()


def extract_trace(content: str, max_lines: int = 1000) -> str:
    """Return the last ``max_lines`` lines of the capture without the input box."""

    lines = strip_input_box(_clean_lines(content))
    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines[-max_lines:]).strip("\n")


def extract_conversation(
    content: str,
    *,
    trace_lines: int | None = None,
    clean: bool = True,
) -> ConversationSnapshot:
    """Parse the last user turn and the assistant output that followed it.

    Empty or unrecognisable content yields empty strings rather than an error.
    """

    if not content or not content.strip():
        return ConversationSnapshot()

    lines = strip_input_box(_clean_lines(content))
    trace = extract_trace(content, trace_lines) if trace_lines else ""

    prompt_index = _find_last_prompt(lines)
    if prompt_index is None:
        marker_indexes = [i for i, line in enumerate(lines) if RESPONSE_MARKER_PATTERN.match(line)]
        if not marker_indexes:
            return ConversationSnapshot(full_trace=trace)
        response = _collect_response(lines[marker_indexes[0]:])
        return ConversationSnapshot(claude_response=response, full_trace=trace)

    question, response_start = _collect_question(lines, prompt_index)
    if clean:
        question = clean_user_question(question)
    response = _collect_response(lines[response_start:])
    return ConversationSnapshot(user_question=question, claude_response=response, full_trace=trace)


__all__ = [
    "ConversationSnapshot",
    "clean_user_question",
    "extract_conversation",
    "extract_trace",
    "strip_input_box",
]

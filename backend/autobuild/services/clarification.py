"""Heuristics for recognising agent output that asks the user a question.

The structured input marker is the primary signal that an agent run needs a
human answer. These heuristics cover agents that simply end their run with a
question, and supply choices when a question arrives without explicit options.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

CONFIDENCE_THRESHOLD = 50

_CLARIFICATION_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        # Preferences
        r"would you (like|prefer|want|need)",
        r"do you (want|prefer|need|have)",
        r"which (one|option|approach|method|way|version|framework|library|tool|database)",
        r"what (would|should|do) you (like|prefer|want|need)",
        r"how (would|should) you (like|prefer|want)",
        # Decisions
        r"should I",
        r"shall I",
        r"may I",
        r"can I (use|create|modify|add|remove|change)",
        # Clarification requests
        r"please (clarify|specify|confirm|tell|let me know|indicate)",
        r"(can|could) you (tell|explain|clarify|provide|specify|confirm)",
        # Choices
        r"choose (between|from|one of)",
        r"prefer (a|the|to use|using)",
        r"select (from|between)",
        r"pick (one|between|from)",
        # Confirmations
        r"is (this|that|it) (okay|ok|correct|right|what you want|acceptable)",
        r"does (this|that) (work|sound|look) (good|okay|ok|right)",
        r"are you (okay|ok|fine|happy) with",
        # Blocking
        r"before I (proceed|continue|start|move forward|go ahead)",
        r"need (your|you to|to know)",
        r"require (your|you to|clarification)",
        # Information gathering
        r"what (is|are) (the|your)",
        r"(where|when) (should|do you want|would you like)",
        # Uncertainty
        r"(not sure|uncertain|unclear|don't know) (if|whether|about|how|what|which)",
        r"help me understand",
        # Options presented
        r"option [0-9]+",
        r"approach [0-9]+",
    )
]

_NOT_CLARIFICATION_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"let me",
        r"I('ll| will) (now|first|next|then|go ahead)",
        r"now I('ll| will|'m going to| am going to)",
        r"I'm (going to|about to|starting to|ready to)",
        r"starting (to|with)",
        r"\b(creating|writing|building|updating|modifying|implementing)\b",
        r"what should we do next",
        r"how about (that|this)",
        r"isn't (this|that|it) (great|good|nice)",
        r"let's (see|try|start|begin|create|build)",
        r"I can (see|do|create|make|help)",
        r"I understand",
    )
]

_UNCERTAINTY = re.compile(r"not sure|uncertain|unclear|don't know|need to know", re.IGNORECASE)
_OPTIONS_PRESENTED = re.compile(r"option \d+|approach \d+|(^|\n)\s*\d+[.)]\s+", re.IGNORECASE)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!])\s+")

_MAX_OPTION_LENGTH = 200


def _matches(patterns: list[re.Pattern[str]], text: str) -> int:
    return sum(1 for pattern in patterns if pattern.search(text))


def _last_sentence(text: str) -> str:
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text.strip()) if s.strip()]
    return sentences[-1] if sentences else ""


def detects_clarification_request(message: str) -> bool:
    text = message.strip()
    if not text:
        return False
    if _matches(_NOT_CLARIFICATION_PATTERNS, text):
        return False

    last = _last_sentence(text)
    has_question_mark = text.endswith("?")
    return (
        (has_question_mark and _matches(_CLARIFICATION_PATTERNS, text) > 0)
        or last.endswith("?")
        or (len(last) > 10 and _matches(_CLARIFICATION_PATTERNS, last) > 0)
        or (has_question_mark and bool(_UNCERTAINTY.search(text)))
        or bool(_OPTIONS_PRESENTED.search(text))
    )


def clarification_confidence(message: str) -> int:
    """Score 0-100 for how likely *message* is a genuine question to the user."""
    text = message.strip()
    confidence = 0
    if text.endswith("?"):
        confidence += 30
    confidence += min(_matches(_CLARIFICATION_PATTERNS, text) * 10, 40)
    if _UNCERTAINTY.search(text):
        confidence += 10
    if _OPTIONS_PRESENTED.search(text):
        confidence += 15
    confidence -= min(_matches(_NOT_CLARIFICATION_PATTERNS, text) * 15, 30)
    return max(0, min(100, confidence))


def _clean_option(option: str) -> str:
    cleaned = option.strip()
    cleaned = re.sub(r"[.,;:!?]+$", "", cleaned)
    return cleaned.strip("\"'").strip()


def _collect(pattern: str, message: str, group: int) -> list[str]:
    found = []
    for match in re.finditer(pattern, message, flags=re.IGNORECASE | re.MULTILINE):
        text = match.group(group).strip()
        if 0 < len(text) < _MAX_OPTION_LENGTH:
            found.append(text)
    return found


def extract_options(message: str) -> list[str]:
    """Pull enumerated choices out of a question, trying list formats first."""
    options = (
        _collect(r"^\s*\d+[.)]\s*(.+)$", message, 1)
        or _collect(r"^\s*[a-z][.)]\s+(.+)$", message, 1)
        or _collect(r"^\s*[-*•]\s*(.+)$", message, 1)
        or _collect(r"Option\s+(?:\d+|[a-z])\s*:\s*([^\n.]+)", message, 1)
    )

    if not options:
        listed = re.search(
            r"(?:use|choose|select|prefer)\s+(.+?,\s*.+?)\s+or\s+(.+?)(?:\?|\.|\n|$)",
            message,
            flags=re.IGNORECASE,
        )
        if listed:
            options = [item.strip() for item in listed.group(1).split(",")]
            options.append(listed.group(2).strip())

    if not options:
        between = re.search(
            r"(?:between|choose|select|prefer)\s+(.+?)\s+(?:and|or)\s+(.+?)(?:\?|\.|\n|$)",
            message,
            flags=re.IGNORECASE,
        )
        if between:
            options = [between.group(1), between.group(2)]

    cleaned = (_clean_option(option) for option in options)
    return [option for option in cleaned if 0 < len(option) < _MAX_OPTION_LENGTH]


def extract_core_question(message: str) -> str:
    sentences = [s.strip() for s in re.split(r"(?<=[.!?])\s+", message.strip()) if s.strip()]
    questions = [
        s for s in sentences if s.endswith("?") or _matches(_CLARIFICATION_PATTERNS, s)
    ]
    if questions:
        question = questions[-1]
        return question if question.endswith("?") else f"{question.rstrip('.!')}?"
    return sentences[-1] if sentences else message


@dataclass(slots=True)
class ResponseMatch:
    is_valid: bool
    matched_option: str | None = None
    message: str | None = None


def validate_response(response: str, options: list[str] | None = None) -> ResponseMatch:
    """Match a free-text answer against offered options.

    Answers may name an option exactly or partially, or pick it by position
    ("2", "option 2", "b"). Answers matching nothing are still accepted.
    """
    answer = response.strip().lower()
    if not answer:
        return ResponseMatch(False, message="Response cannot be empty")
    if not options:
        return ResponseMatch(True)

    for option in options:
        if option.lower() == answer:
            return ResponseMatch(True, option)

    selection = re.fullmatch(r"(?:option\s+)?([0-9]+|[a-z])", answer)
    if selection:
        token = selection.group(1)
        index = int(token) - 1 if token.isdigit() else ord(token) - ord("a")
        if 0 <= index < len(options):
            return ResponseMatch(True, options[index])

    for option in options:
        lowered = option.lower()
        if answer in lowered or lowered in answer:
            return ResponseMatch(True, option)

    return ResponseMatch(
        True,
        message="Response does not match any provided option; accepted as custom input",
    )

"""Importance scoring for conversation messages.

Each message gets a retention score in ``[0, 1]`` built from five weighted
factors: recency, forward references, user emphasis, action relevance and
code relevance. Scoring is pure: the same history and weights always yield
the same scores.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable

from pydantic import BaseModel

from ..types.types import Message
from .tokens import get_message_text

# -- Weights ------------------------------------------------------------------


class ScoringWeights(BaseModel):
    """Per-factor weights. The total score is normalized by their sum."""

    recency: float = 0.25
    reference_count: float = 0.15
    user_emphasis: float = 0.25
    action_relevance: float = 0.20
    code_relevance: float = 0.15

    def total(self) -> float:
        return (
            self.recency
            + self.reference_count
            + self.user_emphasis
            + self.action_relevance
            + self.code_relevance
        )


class ScoreFactors(BaseModel):
    recency: float
    reference_count: float
    user_emphasis: float
    action_relevance: float
    code_relevance: float


class MessageScore(BaseModel):
    """Retention score for one message of the history."""

    message_index: int
    total_score: float
    factors: ScoreFactors


# -- Factor helpers -----------------------------------------------------------

_FILE_PATH_RE = re.compile(
    r"(?:^|[\s\"'`(])(\./)?((?:[@\w.-]+/)+[\w.-]+\.[a-zA-Z]{1,10})(?=[\s\"'`),:;]|$)",
    re.MULTILINE,
)
_EMPHASIS_RE = re.compile(r"\b(important|critical|must|need|urgent)\b", re.IGNORECASE)
_INSTRUCTION_RE = re.compile(r"\b(please|should|make sure|don't forget|remember)\b", re.IGNORECASE)

MAX_REFERENCES = 5


def extract_file_paths(text: str) -> set[str]:
    """Extract file paths such as ``src/foo/bar.py`` or ``./pkg/mod.ts`` from text."""
    return {match.group(2) for match in _FILE_PATH_RE.finditer(text)}


def _recency(index: int, total: int) -> float:
    if total <= 1:
        return 1.0
    distance = total - index - 1
    return math.exp(-distance / (total * 0.5))


def _user_emphasis(message: Message, text: str) -> float:
    if message.role != "user":
        return 0.3
    score = 0.5
    if "?" in text:
        score += 0.2
    if "!" in text or _EMPHASIS_RE.search(text):
        score += 0.2
    if _INSTRUCTION_RE.search(text):
        score += 0.1
    return min(score, 1.0)


def _action_relevance(messages: list[Message], index: int) -> float:
    message = messages[index]
    if message.has_tool_use():
        return 1.0
    if message.has_tool_result():
        return 0.8
    if message.role == "user":
        for later in messages[index + 1 : index + 3]:
            if later.role == "assistant" and later.has_tool_use():
                return 0.6
    return 0.0


def _code_relevance(paths: set[str], indexed_files: set[str] | None) -> float:
    if not indexed_files:
        return 0.5
    if not paths:
        return 0.3
    indexed = 0
    for path in paths:
        if path in indexed_files or any(f.endswith("/" + path) for f in indexed_files):
            indexed += 1
    return 0.3 + 0.7 * (indexed / len(paths))


def _mentions(texts: list[str], entities: Iterable[str]) -> list[set[str]]:
    values = [value for value in entities if value]
    mentions = []
    for text in texts:
        found = extract_file_paths(text)
        found.update(value for value in values if value in text)
        mentions.append(found)
    return mentions


# -- Scoring ------------------------------------------------------------------


def score_messages(
    messages: list[Message],
    weights: ScoringWeights | None = None,
    entities: Iterable[str] | None = None,
    indexed_files: set[str] | None = None,
) -> list[MessageScore]:
    """Score every message of a history by importance.

    Args:
        messages: Conversation history, oldest first.
        weights: Factor weights; defaults to ``ScoringWeights()``.
        entities: Optional recurring strings (symbols, patterns) counted as references
            in addition to the file paths found in each message.
        indexed_files: Optional set of indexed file paths for code relevance.

    Returns:
        One MessageScore per message, in history order.
    """
    if not messages:
        return []
    weights = weights or ScoringWeights()
    weight_sum = weights.total() or 1.0

    texts = [get_message_text(m) for m in messages]
    mentions = _mentions(texts, entities or [])
    total = len(messages)

    scores: list[MessageScore] = []
    for i, message in enumerate(messages):
        forward_refs = 0
        if mentions[i]:
            for later in mentions[i + 1 :]:
                if mentions[i] & later:
                    forward_refs += 1

        factors = ScoreFactors(
            recency=_recency(i, total),
            reference_count=min(forward_refs / MAX_REFERENCES, 1.0),
            user_emphasis=_user_emphasis(message, texts[i]),
            action_relevance=_action_relevance(messages, i),
            code_relevance=_code_relevance(extract_file_paths(texts[i]), indexed_files),
        )
        weighted = (
            factors.recency * weights.recency
            + factors.reference_count * weights.reference_count
            + factors.user_emphasis * weights.user_emphasis
            + factors.action_relevance * weights.action_relevance
            + factors.code_relevance * weights.code_relevance
        )
        scores.append(
            MessageScore(message_index=i, total_score=weighted / weight_sum, factors=factors)
        )
    return scores


def get_top_messages(scores: list[MessageScore], n: int) -> list[MessageScore]:
    """Return the ``n`` highest-scoring messages, best first."""
    return sorted(scores, key=lambda s: s.total_score, reverse=True)[:n]


def get_messages_above_threshold(
    scores: list[MessageScore], threshold: float
) -> list[MessageScore]:
    return [s for s in scores if s.total_score >= threshold]

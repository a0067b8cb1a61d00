"""Entity-reference compression for outgoing requests.

Recurring long strings (file paths, URLs, identifiers) are replaced by short
references ``E1``, ``E2``, ... and a legend mapping them back is sent along.
Compression is lossless: ``decompress_text(compress_text(t))`` returns ``t``.

Example::

    "The UserAuthService in src/services/auth.ts handles auth"
    becomes
    "The E1 in E2 handles auth"
    with {E1: "UserAuthService", E2: "src/services/auth.ts"}
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum

from pydantic import BaseModel

from ..types.types import Message

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    PATH = "path"
    URL = "url"
    IMPORT = "import"
    CLASS = "class"
    FUNCTION = "function"
    VARIABLE = "variable"


class Entity(BaseModel):
    """A recurring string and the short reference standing in for it."""

    id: str
    value: str
    type: EntityType
    count: int

    @property
    def savings(self) -> int:
        return (len(self.value) - len(self.id)) * self.count


class CompressedContext(BaseModel):
    entities: dict[str, Entity]
    messages: list[Message]
    original_size: int
    compressed_size: int

    @property
    def compression_ratio(self) -> float:
        return self.original_size / self.compressed_size if self.compressed_size else 1.0


class TopEntity(BaseModel):
    id: str
    value: str
    savings: int


class CompressionStats(BaseModel):
    original_chars: int
    compressed_chars: int
    legend_chars: int
    net_chars: int
    savings: int
    savings_percent: float
    entity_count: int
    top_entities: list[TopEntity]


# -- Extraction ---------------------------------------------------------------

# More specific kinds first; each entry is (type, pattern, minimum length)
ENTITY_PATTERNS: list[tuple[EntityType, re.Pattern[str], int]] = [
    (
        EntityType.PATH,
        re.compile(
            r"(?:^|[\s`'\"(\[{])([a-zA-Z]:[\\/][^\s`'\")\]}\n]+"
            r"|(?:\.\.?/|/)?(?:[\w.-]+/)+[\w.-]+\.[a-zA-Z0-9]+)(?=[\s`'\")\]}\n,;:]|$)",
            re.MULTILINE,
        ),
        10,
    ),
    (EntityType.URL, re.compile(r"https?://[^\s`'\")\]}\n]+"), 15),
    (
        EntityType.IMPORT,
        re.compile(r"(?:from\s+['\"]|import\s+['\"]|require\s*\(\s*['\"])([^'\"]+)['\"]"),
        5,
    ),
    (
        EntityType.CLASS,
        re.compile(
            r"\b([A-Z][a-z]+(?:[A-Z][a-z]+)+(?:Service|Controller|Handler|Manager|Factory|Provider"
            r"|Repository|Component|Module|Helper|Util|Client|Server|Worker|Processor|Builder"
            r"|Adapter|Wrapper|Interface|Base|Abstract|Impl)?)\b"
        ),
        8,
    ),
    (
        EntityType.FUNCTION,
        re.compile(
            r"\b((?:get|set|is|has|can|should|will|did|handle|on|process|create|update|delete"
            r"|fetch|load|save|validate|parse|format|render|init|setup|configure|build|make"
            r"|find|search|filter|map|reduce|transform)[A-Z][a-zA-Z]+)\b"
        ),
        8,
    ),
    (
        EntityType.VARIABLE,
        re.compile(r"\b([A-Z][A-Z0-9]*(?:_[A-Z0-9]+){2,}|[a-z][a-z0-9]*(?:_[a-z0-9]+){2,})\b"),
        10,
    ),
]

MIN_OCCURRENCES = 2
MIN_SAVINGS_CHARS = 5
MAX_ENTITIES = 50
REFERENCE_LENGTH = 3

_REFERENCE_RE = re.compile(r"\bE\d+\b")
_PARTIAL_REFERENCE_RE = re.compile(r"(?<!\w)E\d*$")

TYPE_LABELS = {
    EntityType.PATH: "Files",
    EntityType.URL: "URLs",
    EntityType.IMPORT: "Imports",
    EntityType.CLASS: "Classes",
    EntityType.FUNCTION: "Functions",
    EntityType.VARIABLE: "Variables",
}


def _message_text(message: Message) -> str:
    if isinstance(message.content, str):
        return message.content
    return "\n".join(block.text for block in message.content if block.type == "text")


def _count_occurrences(text: str, value: str) -> int:
    return len(_boundary_pattern(value).findall(text))


def _boundary_pattern(value: str) -> re.Pattern[str]:
    # Only standalone occurrences are replaced so the reference keeps word boundaries
    return re.compile(rf"(?<!\w){re.escape(value)}(?!\w)")


def extract_entities(messages: list[Message]) -> dict[str, Entity]:
    """Find recurring strings worth replacing, best savings first."""
    all_text = "\n".join(_message_text(m) for m in messages)
    candidates: dict[str, tuple[EntityType, int]] = {}

    for entity_type, pattern, min_length in ENTITY_PATTERNS:
        for match in pattern.finditer(all_text):
            value = match.group(1) if match.groups() and match.group(1) else match.group(0)
            if len(value) < min_length or value in candidates:
                continue
            count = _count_occurrences(all_text, value)
            if count >= MIN_OCCURRENCES:
                candidates[value] = (entity_type, count)

    worthwhile = [
        (value, entity_type, count)
        for value, (entity_type, count) in candidates.items()
        if len(value) - REFERENCE_LENGTH >= MIN_SAVINGS_CHARS
    ]
    worthwhile.sort(key=lambda item: (len(item[0]) - REFERENCE_LENGTH) * item[2], reverse=True)

    entities: dict[str, Entity] = {}
    for n, (value, entity_type, count) in enumerate(worthwhile[:MAX_ENTITIES], start=1):
        entity_id = f"E{n}"
        entities[entity_id] = Entity(id=entity_id, value=value, type=entity_type, count=count)
    return entities


# -- Compression --------------------------------------------------------------


def compress_text(text: str, entities: dict[str, Entity]) -> str:
    """Replace entity values with their references, longest value first."""
    for entity in sorted(entities.values(), key=lambda e: len(e.value), reverse=True):
        text = _boundary_pattern(entity.value).sub(entity.id, text)
    return text


def decompress_text(text: str, entities: dict[str, Entity]) -> str:
    """Expand references produced by ``compress_text`` back to their values."""

    def expand(match: re.Match[str]) -> str:
        entity = entities.get(match.group(0))
        return entity.value if entity else match.group(0)

    return _REFERENCE_RE.sub(expand, text)


def _compress_message(message: Message, entities: dict[str, Entity]) -> Message:
    if isinstance(message.content, str):
        return message.model_copy(update={"content": compress_text(message.content, entities)})
    blocks = [
        block.model_copy(update={"text": compress_text(block.text, entities)})
        if block.type == "text"
        else block
        for block in message.content
    ]
    return message.model_copy(update={"content": blocks})


def compress_context(messages: list[Message]) -> CompressedContext:
    """Compress the text blocks of a conversation.

    Returns the input unchanged (and no entities) when the text already
    contains reference-like tokens, since those could not be told apart
    from real references on the way back.
    """
    original_size = sum(len(_message_text(m)) for m in messages)
    unchanged = CompressedContext(
        entities={}, messages=messages, original_size=original_size, compressed_size=original_size
    )
    if any(_REFERENCE_RE.search(_message_text(m)) for m in messages):
        return unchanged

    entities = extract_entities(messages)
    if not entities:
        return unchanged

    compressed = [_compress_message(m, entities) for m in messages]
    return CompressedContext(
        entities=entities,
        messages=compressed,
        original_size=original_size,
        compressed_size=sum(len(_message_text(m)) for m in compressed),
    )


def generate_entity_legend(entities: dict[str, Entity]) -> str:
    """Render the reference legend sent to the model alongside compressed messages."""
    if not entities:
        return ""
    by_type: dict[EntityType, list[Entity]] = {}
    for entity in entities.values():
        by_type.setdefault(entity.type, []).append(entity)
    lines = ["## Entity References"]
    for entity_type, group in by_type.items():
        lines.append(f"### {TYPE_LABELS[entity_type]}")
        lines.extend(f"- {entity.id}: {entity.value}" for entity in group)
    return "\n".join(lines)


def get_compression_stats(result: CompressedContext) -> CompressionStats:
    legend_chars = len(generate_entity_legend(result.entities))
    net = result.compressed_size + legend_chars
    savings = result.original_size - net
    top = sorted(result.entities.values(), key=lambda e: e.savings, reverse=True)[:10]
    return CompressionStats(
        original_chars=result.original_size,
        compressed_chars=result.compressed_size,
        legend_chars=legend_chars,
        net_chars=net,
        savings=savings,
        savings_percent=(savings / result.original_size * 100) if result.original_size else 0.0,
        entity_count=len(result.entities),
        top_entities=[TopEntity(id=e.id, value=e.value, savings=e.savings) for e in top],
    )


def _payload_size(messages: list[Message]) -> int:
    return sum(
        len(json.dumps(m.model_dump(mode="json")["content"], ensure_ascii=False)) for m in messages
    )


def maybe_compress(messages: list[Message]) -> tuple[list[Message], dict[str, Entity], str]:
    """Compress messages only if compressed payload plus legend is strictly smaller.

    Returns:
        Tuple of (messages to send, entity map, legend). When compression does
        not pay for itself the original messages are returned with an empty map
        and legend.
    """
    result = compress_context(messages)
    if not result.entities:
        return messages, {}, ""

    legend = generate_entity_legend(result.entities)
    original = _payload_size(messages)
    compressed = _payload_size(result.messages) + len(legend)
    if compressed >= original:
        logger.debug("Compression skipped, no savings (%d >= %d)", compressed, original)
        return messages, {}, ""

    logger.debug(
        "Compression saved %d chars with %d entities", original - compressed, len(result.entities)
    )
    return result.messages, result.entities, legend


# -- Streaming decompression --------------------------------------------------


class StreamingDecompressor:
    """Expand entity references in streamed text as chunks arrive.

    A reference cut by a chunk boundary (``"... E"`` + ``"12 ..."``) is held
    back until the next chunk, so callers never see a partial reference.
    """

    def __init__(self, entities: dict[str, Entity]):
        self.entities = entities
        self._buffer = ""

    def feed(self, chunk: str) -> str:
        if not self.entities:
            return chunk
        text = self._buffer + chunk
        match = _PARTIAL_REFERENCE_RE.search(text)
        if match:
            self._buffer = text[match.start() :]
            text = text[: match.start()]
        else:
            self._buffer = ""
        return decompress_text(text, self.entities)

    def flush(self) -> str:
        text, self._buffer = self._buffer, ""
        return decompress_text(text, self.entities)

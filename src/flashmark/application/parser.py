"""
Markdown card parser.

Format::

    ID: 1
    Q: What is ownership?
    A: Every value has a single owner.
    Multiple lines are supported.

    Q: A card without an ID is pending until the authority assigns one.
    A: ...

Also hosts the helpers that rewrite files once ids are assigned.
"""

import hashlib
import logging
import re
from collections.abc import Iterator
from pathlib import PurePosixPath

from flashmark.domain.constants import MAX_CARD_ID
from flashmark.domain.models import CardRecord, ParseResult, ParseWarning

logger = logging.getLogger(__name__)

ID_PREFIX = "ID:"
QUESTION_PREFIX = "Q:"
ANSWER_PREFIX = "A:"

_ID_VALUE_RE = re.compile(r"^\d+$")


def split_lines(text: str) -> list[str]:
    """Split on `\\n` only, dropping the empty tail of a trailing newline and any `\\r`."""
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


class _RecordBuilder:
    def __init__(self, line_number: int):
        self.line_number = line_number
        self.id: int | None = None
        self.id_error: str | None = None
        self.question: list[str] | None = None
        self.answer: list[str] | None = None
        self.field: list[str] | None = None

    @property
    def has_content(self) -> bool:
        return self.question is not None or self.answer is not None

    def open_question(self, text: str) -> None:
        self.question = [text]
        self.field = self.question

    def open_answer(self, text: str) -> None:
        self.answer = [text]
        self.field = self.answer

    def append(self, line: str) -> None:
        if self.field is None:
            return
        self.field.append(line)

    def build(self) -> CardRecord | ParseWarning:
        if self.id_error:
            return ParseWarning(self.line_number, self.id_error)
        # Trimming happens once, on the accumulated text.
        question = "\n".join(self.question).strip() if self.question is not None else ""
        answer = "\n".join(self.answer).strip() if self.answer is not None else ""
        if not question:
            return ParseWarning(self.line_number, "missing question")
        if not answer:
            return ParseWarning(self.line_number, "missing answer")
        return CardRecord(
            id=self.id, question=question, answer=answer, line_number=self.line_number
        )


def _marker(line: str) -> tuple[str, str] | None:
    stripped = line.strip()
    for prefix in (ID_PREFIX, QUESTION_PREFIX, ANSWER_PREFIX):
        if stripped.startswith(prefix):
            return prefix, stripped[len(prefix) :].strip()
    return None


def _parse_id(value: str) -> tuple[int | None, str | None]:
    if not value:
        return None, None
    if not _ID_VALUE_RE.match(value):
        return None, f"invalid ID {value!r}"
    card_id = int(value)
    if card_id < 1 or card_id > MAX_CARD_ID:
        return None, f"ID out of range: {value}"
    return card_id, None


def iter_records(text: str) -> Iterator[CardRecord | ParseWarning]:
    """
    Lazily yield records and warnings in file order.

    Each call starts a fresh pass, so the sequence is restartable, and the
    same text always yields the same sequence.
    """
    current: _RecordBuilder | None = None
    seen_ids: set[int] = set()

    def finish(builder: _RecordBuilder) -> CardRecord | ParseWarning:
        item = builder.build()
        if isinstance(item, CardRecord) and item.id is not None:
            if item.id in seen_ids:
                return ParseWarning(item.line_number, f"duplicate ID {item.id}")
            seen_ids.add(item.id)
        return item

    for idx, line in enumerate(split_lines(text)):
        line_number = idx + 1

        marker = _marker(line)
        if marker is None:
            if current is not None:
                current.append(line)
            continue

        prefix, rest = marker
        if prefix == ID_PREFIX:
            if current is not None:
                yield finish(current)
            current = _RecordBuilder(line_number)
            current.id, current.id_error = _parse_id(rest)
        elif prefix == QUESTION_PREFIX:
            if current is None or current.has_content:
                if current is not None:
                    yield finish(current)
                current = _RecordBuilder(line_number)
            current.open_question(rest)
        else:
            if current is None or current.answer is not None:
                if current is not None:
                    yield finish(current)
                current = _RecordBuilder(line_number)
            current.open_answer(rest)

    if current is not None:
        yield finish(current)


def parse(text: str) -> ParseResult:
    """Parse markdown into card records, collecting per-record warnings."""
    result = ParseResult()
    for item in iter_records(text):
        if isinstance(item, ParseWarning):
            logger.debug(f"[parse] skipped record: {item}")
            result.warnings.append(item)
        else:
            result.records.append(item)
    return result


def inject_ids(text: str, assignments: dict[int, int]) -> str:
    """
    Write `ID: n` lines for pending records.

    Args:
        text: Original file content.
        assignments: 1-based line number of the pending record -> new id.

    An empty `ID:` marker on the target line is filled in place; otherwise
    the id line is inserted above it. Line endings and the presence of a
    trailing newline are preserved.
    """
    if not assignments:
        return text

    pieces = text.split("\n")
    out: list[str] = []
    for idx, piece in enumerate(pieces):
        card_id = assignments.get(idx + 1)
        if card_id is None:
            out.append(piece)
            continue
        cr = "\r" if piece.endswith("\r") else ""
        body = piece[:-1] if cr else piece
        if body.strip() == ID_PREFIX:
            indent = body[: len(body) - len(body.lstrip())]
            out.append(f"{indent}{ID_PREFIX} {card_id}{cr}")
        else:
            out.append(f"{ID_PREFIX} {card_id}{cr}")
            out.append(piece)
    return "\n".join(out)


def hash_content(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def extract_deck_path(file_path: str) -> str:
    """
    Derive the deck from a file path relative to its watched root.

    "rust/ownership.md" -> "rust", "prog/rust/basics.md" -> "prog/rust",
    "single.md" -> "single".
    """
    path = PurePosixPath(file_path.replace("\\", "/"))
    parent = str(path.parent)
    if parent in ("", "."):
        return path.stem
    return parent

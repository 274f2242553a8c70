"""Text helpers: sentence splitting, sentence-grouped chunking and tokenising."""

from __future__ import annotations

import re
from typing import Iterable, Iterator

FRONTMATTER_RE = re.compile(r"^---\r?\n.*?\r?\n---\r?\n?", re.DOTALL)
_SENTENCE_BREAK_RE = re.compile(r"([.!?])\s+")
_WORD_RE = re.compile(r"\w+", re.UNICODE)

MIN_SENTENCE_CHARS = 10
MIN_CHUNK_SENTENCES = 2
MAX_CHUNK_SENTENCES = 4


def strip_frontmatter(text: str) -> str:
    """Remove a leading YAML front matter block."""
    return FRONTMATTER_RE.sub("", text, count=1)


def split_sentences(text: str) -> list[str]:
    """Split text into sentences, dropping short fragments."""
    body = strip_frontmatter(text)
    raw = _SENTENCE_BREAK_RE.sub(r"\1\n", body).split("\n")
    sentences = (part.strip() for part in raw)
    return [s for s in sentences if len(s) > MIN_SENTENCE_CHARS]


def hard_split(text: str, max_chars: int) -> Iterator[str]:
    """Cut ``text`` into consecutive pieces of at most ``max_chars``."""
    step = max(max_chars, 1)
    for start in range(0, len(text), step):
        piece = text[start : start + step].strip()
        if piece:
            yield piece


def chunk_sentences(text: str, *, prefix: str, max_chars: int = 400) -> list[str]:
    """Group sentences into chunks of 2-4 sentences near ``max_chars``.

    Every chunk is rendered as ``"<prefix>: <sentences>"`` so each embedded
    span carries the document's title and tags. A sentence that cannot fit
    the budget on its own is hard-split. Non-empty input always produces at
    least one chunk.
    """
    if not text or not text.strip():
        return []

    budget = max(max_chars - (len(prefix) + 2), 1)
    sentences = split_sentences(text)
    if not sentences:
        body = strip_frontmatter(text).strip() or text.strip()
        return [f"{prefix}: {body[:budget]}"]

    chunks: list[str] = []
    current: list[str] = []
    current_len = 0

    def emit() -> None:
        nonlocal current, current_len
        if current:
            chunks.append(f"{prefix}: {' '.join(current)}")
        current = []
        current_len = 0

    for sentence in sentences:
        if len(sentence) > budget:
            emit()
            chunks.extend(f"{prefix}: {piece}" for piece in hard_split(sentence, budget))
            continue

        would_exceed = current_len + len(sentence) > budget
        if (would_exceed and len(current) >= MIN_CHUNK_SENTENCES) or len(
            current
        ) >= MAX_CHUNK_SENTENCES:
            emit()

        current.append(sentence)
        current_len += len(sentence) + 1

    emit()
    return chunks


def tokenize(text: str, *, min_length: int = 2) -> list[str]:
    """Lower-case word tokens of at least ``min_length`` characters."""
    return [tok for tok in _WORD_RE.findall(text.lower()) if len(tok) >= min_length]


def query_words(query: str, *, min_length: int = 3) -> list[str]:
    """Whitespace-separated query words long enough to score on."""
    return [w for w in query.lower().split() if len(w) >= min_length]


def first_matching_sentence(content: str, words: Iterable[str], *, max_length: int = 150) -> str:
    """Excerpt: the first sentence containing any of ``words``, else the opening text."""
    words = list(words)
    body = strip_frontmatter(content)
    for sentence in (s.strip() for s in re.split(r"[.!?]+", body)):
        if not sentence:
            continue
        lowered = sentence.lower()
        if any(word in lowered for word in words):
            return f"{sentence[:max_length]}..." if len(sentence) > max_length else sentence

    opening = body[:max_length].strip()
    return f"{opening}..." if opening else ""


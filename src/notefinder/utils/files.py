"""Utility helpers for working with files and content fingerprints."""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import re
from pathlib import Path
from typing import Iterable, Iterator, Sequence

from notefinder.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

NOTE_SUFFIXES = (".md", ".markdown")


def iter_note_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield markdown note paths from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            children = sorted(
                child
                for child in item.rglob("*")
                if child.suffix.lower() in NOTE_SUFFIXES
                and not any(part.startswith(".") for part in child.relative_to(item).parts)
            )
            yield from iter_note_paths(children)
        elif item.is_file() and item.suffix.lower() in NOTE_SUFFIXES:
            yield item


def content_hash(text: str) -> str:
    """SHA256 fingerprint of a text body."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compile_exclusion_pattern(pattern: str) -> re.Pattern[str]:
    """Translate a glob such as ``templates/**`` or ``*.draft.md`` into a regex.

    Patterns without a directory part match the basename anywhere in the tree.
    """
    if not pattern or not pattern.strip():
        raise ConfigurationError("empty exclusion pattern")
    glob = pattern.strip().lstrip("/")
    if "/" not in glob:
        glob = f"**/{glob}"
    try:
        translated = fnmatch.translate(glob)
        # fnmatch treats "**/" as "*/", so allow zero leading directories too.
        if glob.startswith("**/"):
            translated = f"(?:{translated}|{fnmatch.translate(glob[3:])})"
        return re.compile(translated)
    except re.error as exc:
        raise ConfigurationError(f"invalid exclusion pattern {pattern!r}: {exc}") from exc


def compile_exclusions(patterns: Sequence[str]) -> list[re.Pattern[str]]:
    """Compile every valid pattern; invalid ones are logged and ignored."""
    compiled: list[re.Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(compile_exclusion_pattern(pattern))
        except ConfigurationError as exc:
            LOGGER.warning("Ignoring exclusion pattern: %s", exc)
    return compiled


def is_excluded(doc_id: str, patterns: Sequence[re.Pattern[str]]) -> bool:
    return any(pattern.match(doc_id) for pattern in patterns)

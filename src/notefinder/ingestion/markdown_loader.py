"""Markdown note loading and metadata extraction.

Front matter is parsed with PyYAML; tags, headings and links are read from
the body with regular expressions.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Sequence

import yaml

from notefinder.corpus import InMemoryCorpus
from notefinder.models import ChangeEvent, Document, DocumentMetadata, LinkRef
from notefinder.utils.files import compile_exclusions, content_hash, is_excluded, iter_note_paths

LOGGER = logging.getLogger(__name__)

_FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)
_CODE_FENCE_PATTERN = re.compile(r"^(```|~~~).*?^\1", re.DOTALL | re.MULTILINE)
_HEADING_PATTERN = re.compile(r"^#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)
_TAG_PATTERN = re.compile(r"(?<![\w/#&])#([\w][\w/-]*)", re.UNICODE)
_WIKILINK_PATTERN = re.compile(r"!?\[\[([^\]|#^]+)(?:[#^][^\]|]*)?(?:\|([^\]]+))?\]\]")
_MDLINK_PATTERN = re.compile(r"(?<!!)\[([^\]]*)\]\(<?([^)\s>]+?)>?(?:\s+\"[^\"]*\")?\)")
_SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


def split_frontmatter(text: str) -> tuple[Dict[str, Any], str]:
    """Return ``(fields, body)``; malformed YAML yields empty fields."""
    match = _FRONTMATTER_PATTERN.match(text)
    if not match:
        return {}, text
    body = text[match.end() :]
    try:
        fields = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        LOGGER.warning("Failed to parse front matter: %s", exc)
        return {}, body
    if not isinstance(fields, dict):
        return {}, body
    return {str(key): value for key, value in fields.items()}, body


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part for part in re.split(r"[,\s]+", value) if part]
    if isinstance(value, (list, tuple, set)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return [str(value)]


def _strip_code(body: str) -> str:
    return _CODE_FENCE_PATTERN.sub("", body)


def extract_links(body: str) -> List[LinkRef]:
    """Wiki links ``[[target|text]]`` and relative markdown links to notes."""
    links: List[LinkRef] = []
    text = _strip_code(body)
    for match in _WIKILINK_PATTERN.finditer(text):
        target = match.group(1).strip()
        if target:
            links.append(LinkRef(target=target, display_text=(match.group(2) or "").strip()))
    for match in _MDLINK_PATTERN.finditer(text):
        target = match.group(2).strip()
        if not target or target.startswith("#") or _SCHEME_PATTERN.match(target):
            continue
        path = target.split("#", 1)[0].replace("%20", " ")
        if not path.lower().endswith((".md", ".markdown")):
            continue
        links.append(LinkRef(target=path, display_text=match.group(1).strip()))
    return links


def extract_metadata(text: str) -> tuple[DocumentMetadata, str]:
    """Parse a note into its metadata and front-matter-free body."""
    fields, body = split_frontmatter(text)
    code_free = _strip_code(body)

    tags = {tag.lstrip("#").lower() for tag in _as_list(fields.get("tags", fields.get("tag")))}
    for line in code_free.splitlines():
        if _HEADING_PATTERN.match(line):
            continue
        tags.update(match.group(1).lower() for match in _TAG_PATTERN.finditer(line))
    tags.discard("")

    headings = [match.group(1).strip() for match in _HEADING_PATTERN.finditer(code_free)]
    raw_aliases = fields.get("aliases", fields.get("alias"))
    # A scalar alias is a single name, not a word list.
    aliases = [raw_aliases.strip()] if isinstance(raw_aliases, str) else _as_list(raw_aliases)

    metadata = DocumentMetadata(
        tags=tags,
        headings=headings,
        aliases=aliases,
        fields=fields,
        links=extract_links(body),
    )
    return metadata, body


def load_note(path: Path, root: Path) -> Document:
    """Read one note from disk; the id is its posix path relative to ``root``."""
    raw = path.read_text(encoding="utf-8", errors="replace")
    stat = path.stat()
    metadata, body = extract_metadata(raw)
    return Document(
        id=path.relative_to(root).as_posix(),
        title=path.stem,
        content=body,
        mtime=stat.st_mtime,
        size=stat.st_size,
        metadata=metadata,
    )


class MarkdownCorpus(InMemoryCorpus):
    """Corpus backed by a directory of markdown notes.

    :meth:`refresh` re-scans the directory and emits create, modify, delete
    and rename events for whatever changed since the previous scan.
    """

    def __init__(self, root: Path, *, exclude_patterns: Sequence[str] = ()) -> None:
        super().__init__()
        self.root = Path(root).resolve()
        self._exclusions = compile_exclusions(exclude_patterns)
        self._hashes: Dict[str, str] = {}

    def _scan(self) -> Dict[str, Path]:
        found: Dict[str, Path] = {}
        for path in iter_note_paths([self.root]):
            doc_id = path.relative_to(self.root).as_posix()
            if is_excluded(doc_id, self._exclusions):
                LOGGER.debug("Skipping excluded note %s", doc_id)
                continue
            found[doc_id] = path
        return found

    def _read(self, path: Path) -> Document | None:
        try:
            return load_note(path, self.root)
        except (OSError, UnicodeError) as exc:
            LOGGER.warning("Failed to read note %s: %s", path, exc)
            return None

    def load(self) -> int:
        """Initial scan without change events."""
        self._documents.clear()
        self._hashes.clear()
        for doc_id, path in self._scan().items():
            document = self._read(path)
            if document is None:
                continue
            self._documents[doc_id] = document
            self._hashes[doc_id] = content_hash(document.content)
        LOGGER.info("Loaded %d notes from %s", len(self._documents), self.root)
        return len(self._documents)

    def refresh(self) -> List[ChangeEvent]:
        """Re-scan the directory and emit an event per change."""
        found = self._scan()
        events: List[ChangeEvent] = []

        removed = {doc_id for doc_id in self._documents if doc_id not in found}
        created: List[Document] = []
        for doc_id, path in found.items():
            existing = self._documents.get(doc_id)
            if existing is not None:
                try:
                    stat = path.stat()
                except OSError:
                    continue
                if stat.st_mtime == existing.mtime and stat.st_size == existing.size:
                    continue
            document = self._read(path)
            if document is None:
                continue
            if existing is None:
                created.append(document)
                continue
            self._documents[doc_id] = document
            self._hashes[doc_id] = content_hash(document.content)
            events.append(ChangeEvent(kind="modify", doc_id=doc_id))

        # A removed note whose content reappears elsewhere was moved.
        removed_by_hash = {self._hashes.get(doc_id): doc_id for doc_id in sorted(removed)}
        for document in created:
            digest = content_hash(document.content)
            old_id = removed_by_hash.pop(digest, None)
            if old_id is not None and old_id in removed:
                removed.discard(old_id)
                del self._documents[old_id]
                self._hashes.pop(old_id, None)
                self._documents[document.id] = document
                self._hashes[document.id] = digest
                events.append(ChangeEvent(kind="rename", doc_id=document.id, old_id=old_id))
            else:
                self._documents[document.id] = document
                self._hashes[document.id] = digest
                events.append(ChangeEvent(kind="create", doc_id=document.id))

        for doc_id in sorted(removed):
            del self._documents[doc_id]
            self._hashes.pop(doc_id, None)
            events.append(ChangeEvent(kind="delete", doc_id=doc_id))

        for event in events:
            self._emit(event)
        if events:
            LOGGER.info("Detected %d note changes under %s", len(events), self.root)
        return events


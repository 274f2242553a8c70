"""Document corpus: the read side the ranking engine consumes.

The engine never owns persistence. It enumerates documents, reads their
content and metadata, resolves declared links and listens for change
events through the :class:`Corpus` protocol.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Protocol

from notefinder.models import ChangeEvent, Document

LOGGER = logging.getLogger(__name__)

ChangeListener = Callable[[ChangeEvent], None]


class Corpus(Protocol):
    def list_documents(self) -> List[Document]: ...

    def get(self, doc_id: str) -> Document | None: ...

    def read_content(self, doc_id: str) -> str: ...

    def resolve_link(self, target: str, source_id: str) -> str | None: ...

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]: ...


def _link_key(value: str) -> str:
    key = value.strip().split("#", 1)[0].strip().lower()
    for suffix in (".md", ".markdown"):
        if key.endswith(suffix):
            key = key[: -len(suffix)]
    return key


class InMemoryCorpus:
    """Dictionary-backed corpus that emits change events on mutation."""

    def __init__(self, documents: Iterable[Document] = ()) -> None:
        self._documents: Dict[str, Document] = {}
        self._listeners: List[ChangeListener] = []
        for document in documents:
            self._documents[document.id] = document

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._documents

    def list_documents(self) -> List[Document]:
        return list(self._documents.values())

    def get(self, doc_id: str) -> Document | None:
        return self._documents.get(doc_id)

    def read_content(self, doc_id: str) -> str:
        document = self._documents.get(doc_id)
        if document is None:
            raise KeyError(doc_id)
        return document.content

    def resolve_link(self, target: str, source_id: str) -> str | None:
        """Resolve a link target by id, id without extension, title or alias."""
        if target in self._documents:
            return target

        key = _link_key(target)
        if not key:
            return None

        candidates: List[str] = []
        for document in self._documents.values():
            names = [document.id, document.title, *document.metadata.aliases]
            path_stem = _link_key(document.id)
            if key == path_stem or key == path_stem.rsplit("/", 1)[-1]:
                candidates.append(document.id)
            elif any(_link_key(name) == key for name in names if name):
                candidates.append(document.id)

        if not candidates:
            return None
        # Prefer a sibling of the linking note, then the shortest path.
        source_dir = source_id.rsplit("/", 1)[0] + "/" if "/" in source_id else ""
        candidates.sort(key=lambda doc_id: (not doc_id.startswith(source_dir), len(doc_id), doc_id))
        return candidates[0]

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add(self, document: Document) -> None:
        kind = "modify" if document.id in self._documents else "create"
        self._documents[document.id] = document
        self._emit(ChangeEvent(kind=kind, doc_id=document.id))

    def update(self, document: Document) -> None:
        self.add(document)

    def delete(self, doc_id: str) -> None:
        if self._documents.pop(doc_id, None) is not None:
            self._emit(ChangeEvent(kind="delete", doc_id=doc_id))

    def rename(self, old_id: str, new_id: str) -> None:
        document = self._documents.pop(old_id, None)
        if document is None:
            return
        document.id = new_id
        self._documents[new_id] = document
        self._emit(ChangeEvent(kind="rename", doc_id=new_id, old_id=old_id))

    def _emit(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Change listener failed for %s %s", event.kind, event.doc_id)

"""Link graph over the corpus with PageRank importance scores."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Set

from notefinder.corpus import Corpus
from notefinder.index.storage import GraphScoreStore
from notefinder.models import Document
from notefinder.utils.scheduler import Clock, UpdateScheduler

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class GraphNode:
    id: str
    out_links: Set[str] = field(default_factory=set)
    in_links: Set[str] = field(default_factory=set)
    page_rank: float = 0.0


@dataclass(slots=True)
class PageRankStats:
    iterations: int = 0
    converged: bool = False
    max_delta: float = 0.0
    node_count: int = 0
    elapsed: float = 0.0


@dataclass(slots=True)
class GraphStats:
    node_count: int
    edge_count: int
    is_computed: bool
    avg_backlinks: float
    max_backlinks: int


@dataclass(slots=True)
class RankedNode:
    id: str
    score: float
    backlinks: int


class DocumentGraph:
    """Directed link graph with PageRank scores served from a snapshot.

    Mutation handlers update nodes and edges in place and only schedule a
    recomputation; readers always see the last completed score snapshot,
    which is replaced in a single assignment once a computation finishes.
    """

    def __init__(
        self,
        corpus: Corpus,
        *,
        damping: float = 0.85,
        max_iterations: int = 20,
        threshold: float = 1e-4,
        enabled: bool = True,
        store: GraphScoreStore | None = None,
        throttle_ms: float = 60_000,
        debounce_ms: float = 10_000,
        clock: Clock | None = None,
    ) -> None:
        self.corpus = corpus
        self.damping = damping
        self.max_iterations = max_iterations
        self.threshold = threshold
        self.enabled = enabled
        self.store = store
        self._nodes: Dict[str, GraphNode] = {}
        self._scores: Dict[str, float] = {}
        self._raw_scores: Dict[str, float] = {}
        self._computed = False
        self._dirty = False
        self.last_stats = PageRankStats()
        self._throttle_ms = throttle_ms
        self._debounce_ms = debounce_ms
        self._clock = clock
        self._scheduler = self._new_scheduler()

    def _new_scheduler(self) -> UpdateScheduler:
        return UpdateScheduler(
            self._on_scheduled_flush,
            throttle_ms=self._throttle_ms,
            debounce_ms=self._debounce_ms,
            name="LinkGraph",
            clock=self._clock,
        )

    # -- reads -----------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._nodes

    def node(self, doc_id: str) -> GraphNode | None:
        return self._nodes.get(doc_id)

    @property
    def is_computed(self) -> bool:
        return self._computed

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def get_score(self, doc_id: str) -> float:
        """Normalised importance in ``[0, 1]``; 0 when unknown or disabled."""
        if not self.enabled:
            return 0.0
        return self._scores.get(doc_id, 0.0)

    def get_raw_score(self, doc_id: str) -> float:
        if not self.enabled:
            return 0.0
        return self._raw_scores.get(doc_id, 0.0)

    def backlink_count(self, doc_id: str) -> int:
        node = self._nodes.get(doc_id)
        return len(node.in_links) if node is not None else 0

    def top(self, limit: int = 10) -> List[RankedNode]:
        scores = self._scores
        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        return [
            RankedNode(id=doc_id, score=score, backlinks=self.backlink_count(doc_id))
            for doc_id, score in ranked[:limit]
        ]

    def stats(self) -> GraphStats:
        backlinks = [len(node.in_links) for node in self._nodes.values()]
        edge_count = sum(len(node.out_links) for node in self._nodes.values())
        node_count = len(self._nodes)
        return GraphStats(
            node_count=node_count,
            edge_count=edge_count,
            is_computed=self._computed,
            avg_backlinks=sum(backlinks) / node_count if node_count else 0.0,
            max_backlinks=max(backlinks, default=0),
        )

    # -- building --------------------------------------------------------

    def build_graph(self) -> None:
        """Rebuild every node and edge from the corpus."""
        started = time.perf_counter()
        documents = self.corpus.list_documents()
        nodes = {document.id: GraphNode(id=document.id) for document in documents}
        edges = 0
        for document in documents:
            source = nodes[document.id]
            for target in self._resolve_links(document):
                if target in nodes:
                    source.out_links.add(target)
                    nodes[target].in_links.add(document.id)
                    edges += 1
        self._nodes = nodes
        LOGGER.debug(
            "Built link graph: %d nodes, %d edges in %.1fms",
            len(nodes),
            edges,
            (time.perf_counter() - started) * 1000,
        )

    def _resolve_links(self, document: Document) -> Set[str]:
        targets: Set[str] = set()
        for target in document.outbound_links:
            resolved = self.corpus.resolve_link(target, document.id)
            if resolved is not None and resolved != document.id:
                targets.add(resolved)
        return targets

    def compute_page_rank(self) -> PageRankStats:
        """Power iteration over the current node set.

        ``new(n) = (1 - d) / N + d * sum(score(m) / out_degree(m))`` over every
        ``m`` linking to ``n``. Iteration stops at the first round whose
        largest per-node change is below ``threshold``.
        """
        stats = PageRankStats(node_count=len(self._nodes))
        if not self.enabled:
            return stats
        if not self._nodes:
            self._raw_scores = {}
            self._scores = {}
            self._computed = True
            self._dirty = False
            self.last_stats = stats
            return stats

        started = time.perf_counter()
        nodes = list(self._nodes.values())
        count = len(nodes)
        base = (1 - self.damping) / count
        scores = {node.id: 1.0 / count for node in nodes}

        for iteration in range(self.max_iterations):
            new_scores: Dict[str, float] = {}
            max_delta = 0.0
            for node in nodes:
                incoming = 0.0
                for source_id in node.in_links:
                    source = self._nodes.get(source_id)
                    if source is not None and source.out_links:
                        incoming += scores[source_id] / len(source.out_links)
                value = base + self.damping * incoming
                new_scores[node.id] = value
                max_delta = max(max_delta, abs(value - scores[node.id]))
            scores = new_scores
            stats.iterations = iteration + 1
            stats.max_delta = max_delta
            if max_delta < self.threshold:
                stats.converged = True
                break

        for node in nodes:
            node.page_rank = scores[node.id]

        peak = max(scores.values())
        normalised = {doc_id: value / peak for doc_id, value in scores.items()} if peak > 0 else {}

        self._raw_scores = scores
        self._scores = normalised
        self._computed = True
        self._dirty = False
        stats.elapsed = time.perf_counter() - started
        self.last_stats = stats
        LOGGER.debug(
            "PageRank over %d nodes: %d iterations (converged=%s, max delta %.2e) in %.1fms",
            count,
            stats.iterations,
            stats.converged,
            stats.max_delta,
            stats.elapsed * 1000,
        )

        if self.store is not None:
            try:
                self.store.persist(normalised)
            except OSError as exc:
                LOGGER.warning("Failed to persist link graph scores: %s", exc)
        return stats

    def recompute(self) -> PageRankStats:
        self.build_graph()
        return self.compute_page_rank()

    def load(self) -> bool:
        """Serve scores from the store until the first recomputation."""
        if self.store is None:
            return False
        scores = self.store.init()
        if not scores:
            return False
        self._scores = dict(scores)
        LOGGER.debug("Loaded %d cached PageRank scores", len(scores))
        return True

    def reset(self) -> None:
        self._scheduler.destroy()
        self._nodes = {}
        self._scores = {}
        self._raw_scores = {}
        self._computed = False
        self._dirty = False
        if self.store is not None:
            self.store.clear()
        self._scheduler = self._new_scheduler()

    def update_settings(
        self,
        *,
        damping: float | None = None,
        max_iterations: int | None = None,
        threshold: float | None = None,
        enabled: bool | None = None,
    ) -> None:
        if damping is not None:
            self.damping = damping
        if max_iterations is not None:
            self.max_iterations = max_iterations
        if threshold is not None:
            self.threshold = threshold
        if enabled is not None:
            self.enabled = enabled
        self._computed = False

    # -- incremental maintenance -----------------------------------------

    def on_create(self, document: Document) -> None:
        if document.id in self._nodes:
            self.on_modify(document)
            return
        self._nodes[document.id] = GraphNode(id=document.id)
        self._attach_out_links(self._nodes[document.id], document)
        self._mark_dirty(document.id)

    def on_modify(self, document: Document) -> None:
        node = self._nodes.get(document.id)
        if node is None:
            self.on_create(document)
            return
        for target in node.out_links:
            target_node = self._nodes.get(target)
            if target_node is not None:
                target_node.in_links.discard(document.id)
        node.out_links.clear()
        self._attach_out_links(node, document)
        self._mark_dirty(document.id)

    def on_delete(self, doc_id: str) -> None:
        node = self._nodes.pop(doc_id, None)
        if node is None:
            return
        for target in node.out_links:
            target_node = self._nodes.get(target)
            if target_node is not None:
                target_node.in_links.discard(doc_id)
        for source in node.in_links:
            source_node = self._nodes.get(source)
            if source_node is not None:
                source_node.out_links.discard(doc_id)
        self._mark_dirty(doc_id)

    def on_rename(self, old_id: str, new_id: str) -> None:
        node = self._nodes.pop(old_id, None)
        if node is None:
            return
        node.id = new_id
        self._nodes[new_id] = node
        for target in node.out_links:
            target_node = self._nodes.get(target)
            if target_node is not None:
                target_node.in_links.discard(old_id)
                target_node.in_links.add(new_id)
        for source in node.in_links:
            source_node = self._nodes.get(source)
            if source_node is not None:
                source_node.out_links.discard(old_id)
                source_node.out_links.add(new_id)

        # Carry the score across so reads stay meaningful until recomputation.
        scores = dict(self._scores)
        if old_id in scores:
            scores[new_id] = scores.pop(old_id)
            self._scores = scores
        raw_scores = dict(self._raw_scores)
        if old_id in raw_scores:
            raw_scores[new_id] = raw_scores.pop(old_id)
            self._raw_scores = raw_scores
        self._mark_dirty(new_id)

    def _attach_out_links(self, node: GraphNode, document: Document) -> None:
        for target in self._resolve_links(document):
            target_node = self._nodes.get(target)
            if target_node is not None:
                node.out_links.add(target)
                target_node.in_links.add(node.id)

    def _mark_dirty(self, doc_id: str) -> None:
        self._dirty = True
        self._scheduler.schedule(doc_id)

    @property
    def pending_updates(self) -> int:
        return self._scheduler.pending_count

    def flush_updates(self) -> None:
        """Run the pending recomputation now."""
        self._scheduler.flush()

    def _on_scheduled_flush(self, doc_ids: List[str]) -> None:
        LOGGER.debug("Recomputing link graph after %d change(s)", len(doc_ids))
        self.recompute()

    def destroy(self) -> None:
        self._scheduler.destroy()

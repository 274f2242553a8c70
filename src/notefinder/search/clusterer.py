"""Grouping of near-duplicate results by chunk embedding similarity."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, Sequence

import numpy as np

from notefinder.models import ChunkEmbedding
from notefinder.search.types import SearchResult

LOGGER = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.85


class ChunkSource(Protocol):
    def get_chunks(self, doc_id: str) -> List[ChunkEmbedding]: ...


@dataclass(slots=True)
class ResultCluster:
    primary: SearchResult
    related: List[SearchResult] = field(default_factory=list)
    cluster_id: int = 0

    @property
    def size(self) -> int:
        return 1 + len(self.related)


def _unit_rows(chunks: Sequence[ChunkEmbedding]) -> np.ndarray | None:
    if not chunks:
        return None
    matrix = np.vstack([np.asarray(chunk.vector, dtype="float32") for chunk in chunks])
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def document_similarity(
    chunks_a: Sequence[ChunkEmbedding], chunks_b: Sequence[ChunkEmbedding]
) -> float:
    """Best cosine similarity over all chunk pairs; 0 when either side is empty."""
    a = _unit_rows(chunks_a)
    b = _unit_rows(chunks_b)
    if a is None or b is None or a.shape[1] != b.shape[1]:
        return 0.0
    return max(0.0, float(np.max(a @ b.T)))


def cluster_results(
    results: Sequence[SearchResult],
    chunks: ChunkSource,
    threshold: float = DEFAULT_THRESHOLD,
) -> List[ResultCluster]:
    """Single greedy pass in the given ranking order.

    Each result is compared only with the primaries of existing clusters, so
    membership is not transitive. Results without embeddings stay alone.
    """
    ordered = list(results)
    matrices: Dict[str, np.ndarray] = {}
    for result in ordered:
        rows = _unit_rows(chunks.get_chunks(result.doc_id))
        if rows is not None:
            matrices[result.doc_id] = rows

    clusters: List[ResultCluster] = []
    for result in ordered:
        rows = matrices.get(result.doc_id)
        target: ResultCluster | None = None
        if rows is not None:
            for cluster in clusters:
                primary_rows = matrices.get(cluster.primary.doc_id)
                if primary_rows is None or primary_rows.shape[1] != rows.shape[1]:
                    continue
                similarity = float(np.max(rows @ primary_rows.T))
                if similarity >= threshold:
                    target = cluster
                    LOGGER.debug(
                        "%s joins cluster of %s (similarity %.3f)",
                        result.doc_id,
                        cluster.primary.doc_id,
                        similarity,
                    )
                    break
        if target is not None:
            target.related.append(result)
        else:
            clusters.append(ResultCluster(primary=result, cluster_id=len(clusters)))

    LOGGER.debug(
        "Clustered %d results into %d clusters (%d with duplicates)",
        len(ordered),
        len(clusters),
        sum(1 for cluster in clusters if cluster.related),
    )
    return clusters


def flatten_clusters(clusters: Sequence[ResultCluster]) -> List[SearchResult]:
    """Primaries only, annotated with their cluster id, size and related ids."""
    return [
        dataclasses.replace(
            cluster.primary,
            cluster_id=cluster.cluster_id,
            cluster_size=cluster.size,
            related_ids=[related.doc_id for related in cluster.related],
        )
        for cluster in clusters
    ]


def apply_clustering(
    results: Sequence[SearchResult],
    chunks: ChunkSource | None,
    *,
    enabled: bool,
    threshold: float = DEFAULT_THRESHOLD,
) -> List[SearchResult]:
    if not enabled or chunks is None or len(results) <= 1:
        return list(results)
    return flatten_clusters(cluster_results(results, chunks, threshold))

"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from notefinder.embedding.encoder import DEFAULT_MODEL

CACHE_DIR_NAME = ".notefinder"
EMBEDDING_CACHE_FILE = "embeddings.json"
GRAPH_CACHE_FILE = "link-graph.json"

DEFAULT_EXCLUDE_PATTERNS = (
    "**/node_modules/**",
    "**/*.excalidraw.md",
    "**/*.sfile.md",
)


@dataclass(slots=True)
class HybridSettings:
    rrf_k: int = 60
    keyword_weight: float = 0.5
    semantic_weight: float = 0.5
    enable_reranking: bool = True
    rerank_pool_size: int = 20
    title_weight: float = 0.25
    recency_weight: float = 0.15
    usage_weight: float = 0.15
    content_weight: float = 0.25
    page_rank_weight: float = 0.2
    proximity_weight: float = 0.15
    max_results: int = 20
    min_score: float = 0.1
    enable_clustering: bool = False
    cluster_threshold: float = 0.85


@dataclass(slots=True)
class LinkGraphSettings:
    enabled: bool = True
    damping: float = 0.85
    max_iterations: int = 20
    threshold: float = 1e-4
    throttle_ms: float = 60_000
    debounce_ms: float = 10_000


@dataclass(slots=True)
class SemanticSettings:
    enabled: bool = True
    threshold: float = 0.3
    max_concurrent: int = 3
    adaptive_throttling: bool = True
    retries: int = 3
    retry_base_delay: float = 1.0
    cache_enabled: bool = True
    throttle_ms: float = 5_000
    debounce_ms: float = 2_000


@dataclass(slots=True)
class AppConfig:
    cache_dir: Path | None = None
    model_name: str = DEFAULT_MODEL
    chunk_chars: int = 400
    exclude_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    lexicon_throttle_ms: float = 30_000
    lexicon_debounce_ms: float = 5_000
    hybrid: HybridSettings = field(default_factory=HybridSettings)
    link_graph: LinkGraphSettings = field(default_factory=LinkGraphSettings)
    semantic: SemanticSettings = field(default_factory=SemanticSettings)

    def resolve_cache_dir(self, base_dir: Path | None = None) -> Path:
        """Cache location; defaults to a hidden directory inside the notes root."""
        if self.cache_dir is None:
            return (base_dir or Path.cwd()) / CACHE_DIR_NAME
        if Path(self.cache_dir).is_absolute() or base_dir is None:
            return Path(self.cache_dir)
        return base_dir / self.cache_dir

    def embedding_cache_path(self, base_dir: Path | None = None) -> Path:
        return self.resolve_cache_dir(base_dir) / EMBEDDING_CACHE_FILE

    def graph_cache_path(self, base_dir: Path | None = None) -> Path:
        return self.resolve_cache_dir(base_dir) / GRAPH_CACHE_FILE

"""
Two-stage retrieval: bi-encoder candidates from the ANN index, filtered in SQL,
optionally reordered by a cross-encoder.
"""

import sqlite3
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from . import dao
from .config import StoreSettings
from .requests import SearchRequest
from .schema import Memory, MemoryType, SearchResult
from ..util.logging import get_logger
from ..vector.embeddings import IEmbeddingProvider
from ..vector.index import IVectorStore
from ..vector.rerank import IRerankProvider

log = get_logger("memstore.retrieval")

# Smallest ANN fetch; label joins are cheap next to repeated graph walks
MIN_ANN_FETCH = 32
ANN_GROWTH = 4


@dataclass
class RetrievalPlan:
    """How one search call runs."""

    rerank: bool
    candidate_limit: int
    """Stage-1 cap: limit, or limit x retrieval_multiplier when reranking"""

    min_similarity: float
    """Stage-1 cosine threshold, relaxed when reranking"""


def to_search_result(memory: Memory, score: float) -> SearchResult:
    return SearchResult(**vars(memory), similarity=score, vector_similarity=score)


class RetrievalPipeline:
    """Runs searchMemories against one vector index and relational store."""

    def __init__(self, vector_store: IVectorStore, embedding_provider: IEmbeddingProvider, settings: StoreSettings):
        self.vector_store = vector_store
        self.embedding_provider = embedding_provider
        self.settings = settings

    def relaxed_threshold(self, threshold: float) -> float:
        """Stage-1 threshold when a reranker will make the final cut. Never stricter than threshold."""
        relaxed = max(self.settings.rerank_threshold_floor, threshold - self.settings.rerank_threshold_relaxation)
        return min(threshold, relaxed)

    def plan(self, request: SearchRequest, reranker_available: bool) -> RetrievalPlan:
        if request.use_reranker and reranker_available:
            return RetrievalPlan(
                rerank=True,
                candidate_limit=request.limit * request.retrieval_multiplier,
                min_similarity=self.relaxed_threshold(request.min_similarity),
            )
        return RetrievalPlan(rerank=False, candidate_limit=request.limit, min_similarity=request.min_similarity)

    def retrieve_candidates(
        self,
        conn: sqlite3.Connection,
        query_vector: np.ndarray,
        plan: RetrievalPlan,
        memory_type: Optional[MemoryType] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> List[SearchResult]:
        """Stage 1: nearest neighbours above the threshold that pass the kind/tag filters, best first.

        Filters are applied after the ANN lookup, so the fetch widens until enough
        candidates survive, the index is exhausted, or scores drop below the threshold.
        """
        total = len(self.vector_store)
        if total == 0:
            return []

        k = min(total, max(plan.candidate_limit * ANN_GROWTH, MIN_ANN_FETCH))
        while True:
            hits = list(self.vector_store.search(query_vector, k))
            hits.sort(key=lambda hit: hit.score, reverse=True)
            eligible = [hit for hit in hits if hit.score >= plan.min_similarity]

            memories = dao.fetch_candidates(conn, [hit.id for hit in eligible], memory_type, tags)
            candidates = []
            for hit in eligible:
                memory = memories.get(hit.id)
                if memory is None:
                    continue
                candidates.append(to_search_result(memory, hit.score))
                if len(candidates) == plan.candidate_limit:
                    return candidates

            exhausted = k >= total or len(hits) < k or len(eligible) < len(hits)
            if exhausted:
                return candidates
            k = min(total, k * ANN_GROWTH)

    def rerank(
        self,
        query: str,
        candidates: List[SearchResult],
        reranker: IRerankProvider,
        limit: int,
    ) -> Optional[List[SearchResult]]:
        """Stage 2: reorder by cross-encoder score and keep the top limit.

        Returns None when the reranker call fails; the caller falls back to stage-1 ordering.
        """
        try:
            scores = reranker.score(query, [candidate.content for candidate in candidates])
            if len(scores) != len(candidates):
                raise ValueError(f"reranker returned {len(scores)} scores for {len(candidates)} candidates")
        except Exception as e:
            log.log_operation(
                "rerank",
                "degraded",
                details={"model": reranker.model_name, "candidates": len(candidates), "error": repr(e)},
            )
            return None

        for candidate, score in zip(candidates, scores):
            candidate.similarity = float(score)
            candidate.reranked = True

        # Reranker scores are not cosine similarities; min_similarity does not apply
        ordered = sorted(candidates, key=lambda candidate: candidate.similarity, reverse=True)
        return ordered[:limit]

    def run(
        self,
        conn: sqlite3.Connection,
        request: SearchRequest,
        reranker: Optional[IRerankProvider],
    ) -> List[SearchResult]:
        query_vector = self.embedding_provider.embed_text(request.query)
        plan = self.plan(request, reranker is not None)

        candidates = self.retrieve_candidates(conn, query_vector, plan, request.memory_type, request.tags)
        log.debug(
            f"Stage 1 returned {len(candidates)} candidates "
            f"(cap={plan.candidate_limit}, threshold={plan.min_similarity:.3f}, rerank={plan.rerank})"
        )
        if not candidates:
            return []

        if plan.rerank:
            reranked = self.rerank(request.query, candidates, reranker, request.limit)
            if reranked is None:
                # Keep the stage-1 ordering; candidates already passed the relaxed threshold
                return candidates[:request.limit]
            return reranked

        results = candidates[:request.limit]
        return [result for result in results if result.similarity >= request.min_similarity]

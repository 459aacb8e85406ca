"""Item embeddings for content-based recommendations.

Embeddings come from an external provider; this module caches lookups
through the provider gateway and turns a user's history into a mean profile
vector scored against candidates by cosine similarity.
"""

import logging
from typing import Dict, Iterable, List, Optional

import numpy as np

from marketintel.providers import EmbeddingProvider, ProviderGateway

# Configure module logger
logger = logging.getLogger(__name__)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity; 0.0 for zero vectors or mismatched dimensions."""
    if a.shape != b.shape:
        return 0.0
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


class ItemEmbeddings:
    """Embedding lookups for items."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        gateway: Optional[ProviderGateway] = None,
    ):
        self.provider = provider
        self.gateway = gateway or ProviderGateway()

    def get_embeddings(self, item_ids: Iterable[str]) -> Dict[str, np.ndarray]:
        """Usable embeddings for many items, fetched in one provider call."""
        vectors = self.gateway.fetch_batch(
            "embedding.get_embedding", list(item_ids),
            self.provider.get_embeddings,
        )
        usable = {}
        for item_id, vector in vectors.items():
            vector = np.asarray(vector, dtype=float)
            if vector.size and np.all(np.isfinite(vector)):
                usable[item_id] = vector
        return usable

    def user_profile(
        self,
        history: Iterable[str],
        embeddings: Optional[Dict[str, np.ndarray]] = None,
    ) -> Optional[np.ndarray]:
        """Mean embedding of the items in a user's history.

        Items without an embedding are skipped; returns None when none of the
        history has one, or when the embeddings disagree on dimension.
        """
        history = list(history)
        if embeddings is None:
            embeddings = self.get_embeddings(history)
        vectors = [embeddings[item_id] for item_id in history if item_id in embeddings]

        if not vectors:
            return None
        if len({v.shape for v in vectors}) > 1:
            logger.warning("History embeddings have mixed dimensions, ignoring profile")
            return None
        return np.mean(vectors, axis=0)

    def content_scores(
        self,
        history: List[str],
        candidate_ids: Iterable[str],
    ) -> Dict[str, float]:
        """Cosine similarity of each candidate to the user's mean profile.

        Candidates without an embedding score 0.0, as does every candidate
        when the user has no usable profile. History and candidates are
        fetched together in a single provider call.
        """
        candidate_ids = list(candidate_ids)
        history = list(history)
        embeddings = self.get_embeddings(list(dict.fromkeys(history + candidate_ids)))
        profile = self.user_profile(history, embeddings)

        scores = {}
        for item_id in candidate_ids:
            emb = embeddings.get(item_id) if profile is not None else None
            scores[item_id] = 0.0 if emb is None else cosine_similarity(profile, emb)
        return scores

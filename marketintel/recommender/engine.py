"""Hybrid recommendation engine.

Combines collaborative filtering, content similarity, popularity and
business value into one score per candidate item, then re-ranks the list
for category diversity. Items the user has already interacted with are
never recommended.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from marketintel.config import HybridWeights, RecommenderConfig
from marketintel.experiment import CONTROL, TREATMENT
from marketintel.metrics import MetricsService
from marketintel.models import (
    DataSparsityCondition,
    ItemFeatures,
    RecommendationResult,
    UserInteraction,
    utc_now,
)
from marketintel.providers import (
    CatalogProvider,
    EmbeddingProvider,
    InteractionStore,
    ProviderGateway,
)
from marketintel.recommender.diversity import diversity_rerank
from marketintel.recommender.embed import ItemEmbeddings
from marketintel.recommender.factorization import (
    DEFAULT_N_COMPONENTS,
    FactorModel,
    FactorStore,
    train_factor_model,
)
from marketintel.recommender.interactions import InMemoryInteractionStore
from marketintel.recommender.scoring import (
    REASON_POPULAR,
    business_score,
    confidence_score,
    generate_reason,
    hybrid_score,
    normalize_scores,
    popularity_score,
)

# Configure module logger
logger = logging.getLogger(__name__)

ScoreBreakdown = Dict[str, Any]


class HybridRecommender:
    """Combines collaborative, content, popularity and business signals.

    The engine keeps no learned state of its own: interactions live in the
    injected ``InteractionStore`` and latent vectors in the injected
    ``FactorStore``, so separate engine instances never share hidden state.
    The only local record is the list of items each user touched through
    ``update_user_profile``, used to keep those items excluded when the
    store cannot be reached.

    The interaction store computes interaction strength, so it owns the
    engaged-view threshold. When no store is injected one is built from
    ``RecommenderConfig.engaged_view_seconds``.
    """

    def __init__(
        self,
        catalog: CatalogProvider,
        interactions: Optional[InteractionStore] = None,
        embeddings: Optional[EmbeddingProvider] = None,
        factors: Optional[FactorStore] = None,
        config: Optional[RecommenderConfig] = None,
        gateway: Optional[ProviderGateway] = None,
        metrics: Optional[MetricsService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the recommender."""
        self.catalog = catalog
        self.config = config or RecommenderConfig()
        if interactions is None:
            interactions = InMemoryInteractionStore(self.config.engaged_view_seconds)
        elif (
            isinstance(interactions, InMemoryInteractionStore)
            and interactions.engaged_view_seconds != self.config.engaged_view_seconds
        ):
            logger.warning(
                "Injected interaction store uses its own engaged-view threshold",
                extra={
                    "store_threshold": interactions.engaged_view_seconds,
                    "config_threshold": self.config.engaged_view_seconds,
                },
            )
        self.interactions = interactions
        self.factors = factors if factors is not None else FactorStore()
        self.metrics = metrics or MetricsService()
        self.gateway = gateway or ProviderGateway(metrics=self.metrics)
        self.embeddings = (
            ItemEmbeddings(embeddings, self.gateway) if embeddings is not None else None
        )
        self.clock = clock
        self._recent: Dict[str, List[str]] = {}
        self._recent_lock = threading.Lock()

        weights = self.config.weights
        logger.info(
            f"Initialized HybridRecommender: "
            f"CF weight={weights.collaborative:.2f}, "
            f"Content weight={weights.content:.2f}, "
            f"Popularity weight={weights.popularity:.2f}, "
            f"Business weight={weights.business:.2f}, "
            f"Embeddings={'enabled' if embeddings is not None else 'disabled'}"
        )

    def get_recommendations(
        self,
        user_id: str,
        count: Optional[int] = None,
        diversity_weight: Optional[float] = None,
        return_scores: bool = False,
    ) -> Union[List[RecommendationResult], Tuple[List[RecommendationResult], ScoreBreakdown]]:
        """Get recommendations for a user.

        Args:
            user_id: User to recommend for.
            count: Number of results (default from config).
            diversity_weight: Category-diversity strength (default from config).
            return_scores: Also return the per-item component scores.

        Returns:
            Results sorted best first, never containing an item from the
            user's interaction history; with ``return_scores`` a tuple of
            results and score breakdown.

        Raises:
            ValueError: If ``count`` is not positive or ``diversity_weight``
                is negative.
        """
        with self.metrics.timed("get_recommendations"):
            return self._recommend(
                user_id,
                count=count,
                diversity_weight=diversity_weight,
                weights=self.config.weights,
                return_scores=return_scores,
            )

    def get_recommendations_with_experiment(
        self,
        user_id: str,
        group: str,
        count: Optional[int] = None,
    ) -> List[RecommendationResult]:
        """Recommendations for an experiment arm.

        ``control`` runs the standard algorithm; ``treatment`` runs the
        content-heavy variant with stronger diversity.

        Raises:
            ValueError: If ``group`` is not control or treatment.
        """
        if group == CONTROL:
            return self.get_recommendations(user_id, count=count)
        if group != TREATMENT:
            raise ValueError(
                f"Unknown recommendation group '{group}', "
                f"expected '{CONTROL}' or '{TREATMENT}'"
            )

        with self.metrics.timed("get_recommendations_treatment"):
            return self._recommend(
                user_id,
                count=count,
                diversity_weight=self.config.treatment_diversity_weight,
                weights=self.config.treatment_weights,
                return_scores=False,
            )

    def update_user_profile(self, user_id: str, interaction: UserInteraction) -> None:
        """Record an interaction and fold it into the user's profile.

        Appends the event, updates the user's interaction-matrix entry and
        takes one incremental step on the user's latent vector. The next
        ``get_recommendations`` call sees the change and excludes the item.

        Raises:
            ValueError: If the interaction belongs to another user.
        """
        if interaction.user_id != user_id:
            raise ValueError(
                f"Interaction for user {interaction.user_id} "
                f"cannot update profile of user {user_id}"
            )

        with self.metrics.timed("update_user_profile"):
            strength = self.interactions.append_interaction(interaction)
            with self._recent_lock:
                recent = self._recent.setdefault(user_id, [])
                if interaction.item_id not in recent:
                    recent.append(interaction.item_id)
            vector = self.factors.nudge_user(
                user_id,
                interaction.item_id,
                strength,
                self.config.profile_learning_rate,
            )

        logger.info(
            "Updated user profile",
            extra={
                "user_id": user_id,
                "item_id": interaction.item_id,
                "strength": strength,
                "vector_updated": vector is not None,
            },
        )

    def retrain(self, n_components: int = DEFAULT_N_COMPONENTS) -> FactorModel:
        """Rebuild and publish the factor model from the current interactions.

        This is the offline batch job; online calls keep reading the old
        snapshot until the new one is published.
        """
        snapshot = self.interactions.get_matrix_snapshot()
        model = train_factor_model(snapshot, n_components=n_components)
        self.factors.publish(model)
        return model

    # ----- internals -----

    def _recommend(
        self,
        user_id: str,
        count: Optional[int],
        diversity_weight: Optional[float],
        weights: HybridWeights,
        return_scores: bool,
    ):
        count = self.config.default_count if count is None else count
        if diversity_weight is None:
            diversity_weight = self.config.default_diversity_weight
        if count <= 0:
            raise ValueError(f"count must be positive, got {count}")
        if diversity_weight < 0:
            raise ValueError(f"diversity_weight must be >= 0, got {diversity_weight}")

        logger.info(f"Generating hybrid recommendations for user {user_id}, count={count}")

        history = self.gateway.fetch(
            "interactions.get_user_history", user_id,
            self.interactions.get_user_history, user_id,
        )
        recent = self._recent_items(user_id)
        sparsity = None
        if history is None:
            # Store unreachable and never cached: only locally recorded items
            # are known, so personal signals are not trusted.
            sparsity = DataSparsityCondition.HISTORY_UNAVAILABLE
            history = recent
        else:
            history = list(dict.fromkeys(list(history) + recent))

        candidates = self._candidates(set(history))
        if not candidates:
            logger.warning(f"No valid products to recommend for user {user_id}")
            return ([], {}) if return_scores else []

        now = self.clock()
        popularity = {
            item_id: popularity_score(item, now, self.config)
            for item_id, item in candidates.items()
        }
        business = {
            item_id: business_score(item, self.config)
            for item_id, item in candidates.items()
        }
        collaborative: Dict[str, float] = {}
        content: Dict[str, float] = {}
        if sparsity is None:
            collaborative = self._collaborative_scores(user_id, history, candidates)
            content = self._content_scores(history, candidates)
            if not history:
                sparsity = DataSparsityCondition.COLD_START_USER
            elif not collaborative and not any(content.values()):
                sparsity = DataSparsityCondition.NO_PERSONAL_SIGNAL
        if sparsity is not None:
            self.metrics.increment(sparsity.value)
            logger.info(
                "Degrading to popularity-only scoring",
                extra={"user_id": user_id, "sparsity": sparsity.value},
            )

        results = []
        hybrid: Dict[str, float] = {}
        for item_id, item in candidates.items():
            cf = collaborative.get(item_id, 0.0)
            cb = content.get(item_id, 0.0)
            pop = popularity[item_id]

            if sparsity is None:
                hybrid[item_id] = hybrid_score(cf, cb, pop, business[item_id], weights)
                reason = generate_reason(cf, cb, pop)
            else:
                hybrid[item_id] = pop
                reason = REASON_POPULAR

            confidence = confidence_score(len(history), item.usage_count, self.config)
            if sparsity is not None:
                confidence *= self.config.sparse_confidence_factor

            results.append(
                RecommendationResult(
                    item_id=item_id,
                    score=hybrid[item_id],
                    reason=reason,
                    confidence=confidence,
                )
            )

        results.sort(key=lambda r: r.score, reverse=True)
        if sparsity is not DataSparsityCondition.COLD_START_USER:
            categories = {item_id: item.category for item_id, item in candidates.items()}
            results = diversity_rerank(
                results,
                categories,
                diversity_weight,
                self.config.diversity_penalty_scale,
            )
        recommendations = results[:count]

        logger.info(
            f"Generated {len(recommendations)} hybrid recommendations for user {user_id}",
            extra={
                "user_id": user_id,
                "num_candidates": len(candidates),
                "history_size": len(history),
                "sparsity": sparsity.value if sparsity else None,
            },
        )

        if return_scores:
            score_breakdown = {
                "sparsity": sparsity.value if sparsity else None,
                "weights": weights.model_dump(),
                "items": {
                    r.item_id: {
                        "collaborative": collaborative.get(r.item_id, 0.0),
                        "content": content.get(r.item_id, 0.0),
                        "popularity": popularity[r.item_id],
                        "business": business[r.item_id],
                        "hybrid": hybrid[r.item_id],
                        "final": r.score,
                    }
                    for r in recommendations
                },
            }
            return recommendations, score_breakdown
        return recommendations

    def _recent_items(self, user_id: str) -> List[str]:
        with self._recent_lock:
            return list(self._recent.get(user_id, []))

    def _candidates(self, exclude: set) -> Dict[str, ItemFeatures]:
        item_ids = self.gateway.fetch(
            "catalog.list_item_ids", "*",
            self.catalog.list_item_ids,
            default=[],
        )
        wanted = [item_id for item_id in item_ids if item_id not in exclude]
        features = self.gateway.fetch_batch(
            "catalog.get_item_features", wanted, self.catalog.get_items_features
        )
        return {item_id: features[item_id] for item_id in wanted if item_id in features}

    def _collaborative_scores(
        self,
        user_id: str,
        history: List[str],
        candidates: Dict[str, ItemFeatures],
    ) -> Dict[str, float]:
        if not history:
            return {}
        model, user_vector = self.factors.user_snapshot(user_id)
        if user_vector is None:
            logger.debug(f"User {user_id} not in CF model, returning empty scores")
            return {}

        raw = {}
        for item_id in candidates:
            score = model.score(user_vector, item_id)
            if score is not None:
                raw[item_id] = score
        return normalize_scores(raw)

    def _content_scores(
        self,
        history: List[str],
        candidates: Dict[str, ItemFeatures],
    ) -> Dict[str, float]:
        if self.embeddings is None or not history:
            return {}
        return self.embeddings.content_scores(history, candidates)

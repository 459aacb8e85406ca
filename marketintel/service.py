"""Storefront-facing facade.

``MarketplaceIntelligence`` wires the providers, the learned-state stores and
both engines together, and exposes the calls a storefront makes. Every store
is created per instance (or injected), so two facades never share learned
state.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from marketintel.config import (
    FairnessConfig,
    ProviderConfig,
    QLearningConfig,
    RecommenderConfig,
    RewardWeights,
)
from marketintel.experiment import ExperimentRouter
from marketintel.metrics import MetricsService
from marketintel.models import (
    PricingConstraints,
    RecommendationResult,
    UserInteraction,
    UserTier,
    utc_now,
)
from marketintel.pricing.constraints import ConstraintRegistry
from marketintel.pricing.optimizer import PricingDecision, PricingOptimizer
from marketintel.pricing.qtable import QTableStore
from marketintel.pricing.state import PricingStateBuilder
from marketintel.providers import (
    CatalogProvider,
    EmbeddingProvider,
    InteractionStore,
    MarketDataProvider,
    ProviderGateway,
)
from marketintel.recommender.engine import HybridRecommender
from marketintel.recommender.factorization import FactorStore

# Configure module logger
logger = logging.getLogger(__name__)


class MarketplaceIntelligence:
    """Pricing and recommendations behind one storefront entry point."""

    def __init__(
        self,
        catalog: CatalogProvider,
        market: MarketDataProvider,
        constraints: Optional[Dict[str, PricingConstraints]] = None,
        interactions: Optional[InteractionStore] = None,
        embeddings: Optional[EmbeddingProvider] = None,
        router: Optional[ExperimentRouter] = None,
        q_table: Optional[QTableStore] = None,
        factors: Optional[FactorStore] = None,
        qlearning_config: Optional[QLearningConfig] = None,
        reward_weights: Optional[RewardWeights] = None,
        fairness: Optional[FairnessConfig] = None,
        recommender_config: Optional[RecommenderConfig] = None,
        provider_config: Optional[ProviderConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.metrics = MetricsService()
        self.gateway = ProviderGateway(provider_config, self.metrics)
        self.router = router or ExperimentRouter()
        self.constraints = ConstraintRegistry(constraints)

        recommender_config = recommender_config or RecommenderConfig()

        self.pricing = PricingOptimizer(
            state_builder=PricingStateBuilder(catalog, market, self.gateway, clock),
            constraints=self.constraints,
            q_table=q_table,
            config=qlearning_config,
            reward_weights=reward_weights,
            fairness=fairness,
            metrics=self.metrics,
        )
        self.recommender = HybridRecommender(
            catalog=catalog,
            interactions=interactions,
            embeddings=embeddings,
            factors=factors,
            config=recommender_config,
            gateway=self.gateway,
            metrics=self.metrics,
            clock=clock,
        )

    # ----- pricing -----

    def optimize_price(
        self, product_id: str, user_tier: UserTier = UserTier.FREE
    ) -> PricingDecision:
        return self.pricing.optimize_price(product_id, user_tier)

    def get_test_price(
        self, product_id: str, group: str, user_tier: UserTier = UserTier.FREE
    ) -> float:
        return self.pricing.get_test_price(product_id, group, user_tier)

    def price_for_experiment(
        self,
        experiment_id: str,
        product_id: str,
        user_tier: UserTier = UserTier.FREE,
    ) -> float:
        """Test-price multiplier for the arm the product is assigned to."""
        group = self.router.assign(experiment_id, product_id)
        return self.pricing.get_test_price(product_id, group, user_tier)

    # ----- recommendations -----

    def get_recommendations(
        self,
        user_id: str,
        count: Optional[int] = None,
        diversity_weight: Optional[float] = None,
    ) -> List[RecommendationResult]:
        return self.recommender.get_recommendations(user_id, count, diversity_weight)

    def get_recommendations_with_experiment(
        self, user_id: str, group: str
    ) -> List[RecommendationResult]:
        return self.recommender.get_recommendations_with_experiment(user_id, group)

    def recommend_for_experiment(
        self, experiment_id: str, user_id: str
    ) -> List[RecommendationResult]:
        """Recommendations for the arm the user is assigned to."""
        group = self.router.assign(experiment_id, user_id)
        return self.recommender.get_recommendations_with_experiment(user_id, group)

    def update_user_profile(self, user_id: str, interaction: UserInteraction) -> None:
        self.recommender.update_user_profile(user_id, interaction)

    def shutdown(self) -> None:
        """Release the provider worker pool."""
        self.gateway.shutdown()

"""Recommendation signals.

Popularity and business scores depend only on catalog features;
collaborative scores are min-max normalized across the candidate set before
blending.
"""

import math
from datetime import datetime
from typing import Dict

from marketintel.config import HybridWeights, RecommenderConfig
from marketintel.models import ItemFeatures, age_in_days

REASON_COLLABORATIVE = "Users like you also purchased this"
REASON_CONTENT = "Similar to your previous purchases"
REASON_POPULAR = "Trending in the marketplace"


def normalize_scores(scores: Dict[str, float]) -> Dict[str, float]:
    """Normalize scores to 0-1 range."""
    if not scores:
        return {}

    min_score = min(scores.values())
    max_score = max(scores.values())

    if max_score == min_score:
        # All scores are the same, return equal weights
        return {item_id: 0.5 for item_id in scores}

    return {
        item_id: (score - min_score) / (max_score - min_score)
        for item_id, score in scores.items()
    }


def popularity_score(
    item: ItemFeatures,
    now: datetime,
    config: RecommenderConfig,
) -> float:
    """Blend of log-scaled usage, normalized rating and recency decay.

    Recency halves every ``recency_half_life_days`` since the item was
    created.
    """
    usage = min(math.log1p(item.usage_count) / config.usage_log_scale, 1.0)
    rating = item.average_rating / 5
    age_days = age_in_days(item.created_at, now)
    recency = 0.5 ** (age_days / config.recency_half_life_days)
    return (usage + rating + recency) / 3


def business_score(item: ItemFeatures, config: RecommenderConfig) -> float:
    """Weighted blend of price (margin) and performance (quality).

    Monotonically non-decreasing in both price and performance;
    ``margin_bias`` and ``quality_bias`` tilt it toward one or the other.
    """
    profitability = min(item.price / config.price_scale, 1.0)
    performance = min(max(item.performance, 0.0) / config.performance_scale, 1.0)
    total_bias = config.margin_bias + config.quality_bias
    if total_bias == 0:
        return 0.0
    return (
        config.margin_bias * profitability + config.quality_bias * performance
    ) / total_bias


def hybrid_score(
    collaborative: float,
    content: float,
    popularity: float,
    business: float,
    weights: HybridWeights,
) -> float:
    return (
        weights.collaborative * collaborative
        + weights.content * content
        + weights.popularity * popularity
        + weights.business * business
    )


def confidence_score(
    user_interaction_count: int,
    item_usage_count: int,
    config: RecommenderConfig,
) -> float:
    """More data on either side means more confidence; each side caps at 1."""
    user_confidence = min(
        user_interaction_count / config.user_interactions_for_full_confidence, 1.0
    )
    item_confidence = min(
        item_usage_count / config.item_usage_for_full_confidence, 1.0
    )
    return (user_confidence + item_confidence) / 2


def generate_reason(collaborative: float, content: float, popularity: float) -> str:
    if collaborative > content and collaborative > popularity:
        return REASON_COLLABORATIVE
    if content > popularity:
        return REASON_CONTENT
    return REASON_POPULAR

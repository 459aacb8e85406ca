"""Configuration models for MarketIntel engines.

All tunables are pydantic models with documented defaults. Blending weights
are validated on construction and raise ``ConfigurationError`` when they do
not sum to one, so a misconfigured engine never starts serving.
"""

import math
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marketintel.exceptions import ConfigurationError, WeightSumError

# Tolerance when checking that blending weights sum to one
WEIGHT_SUM_TOLERANCE = 1e-6


def check_weights(name: str, weights: Dict[str, float]) -> None:
    """Validate a set of blending weights.

    Args:
        name: Name used in the error message.
        weights: Mapping of component name to weight.

    Raises:
        ConfigurationError: If a weight is negative or non-finite, or the
            weights do not sum to one.
    """
    for key, value in weights.items():
        if not math.isfinite(value) or value < 0:
            raise ConfigurationError(
                f"{name}.{key} must be a finite non-negative number, got {value!r}",
                details={"weights": dict(weights)},
            )
    if abs(sum(weights.values()) - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise WeightSumError(name, weights)


class QLearningConfig(BaseModel):
    """Hyperparameters for the pricing Q-learning agent."""

    model_config = ConfigDict(frozen=True)

    learning_rate: float = Field(default=0.01, gt=0.0, le=1.0)
    discount_factor: float = Field(default=0.95, ge=0.0, le=1.0)
    exploration_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    random_seed: Optional[int] = None
    reward_history_size: int = Field(default=1000, gt=0)


class RewardWeights(BaseModel):
    """Weights of the four reward components; must sum to one."""

    model_config = ConfigDict(frozen=True)

    revenue: float = 0.4
    competitive: float = 0.2
    satisfaction: float = 0.2
    market_share: float = 0.2

    @model_validator(mode="after")
    def _check_sum(self) -> "RewardWeights":
        check_weights("RewardWeights", self.model_dump())
        return self


class FairnessConfig(BaseModel):
    """Per-tier discount fractions applied after all price clamps.

    Discounts must be non-decreasing from free to premium to enterprise so
    that a higher tier never pays more than a lower one.
    """

    model_config = ConfigDict(frozen=True)

    free: float = 0.0
    premium: float = 0.05
    enterprise: float = 0.10

    @model_validator(mode="after")
    def _check_monotonic(self) -> "FairnessConfig":
        discounts = [self.free, self.premium, self.enterprise]
        if any(not (0.0 <= d < 1.0) for d in discounts):
            raise ConfigurationError(
                "Tier discounts must lie in [0, 1)",
                details=self.model_dump(),
            )
        if not (self.free <= self.premium <= self.enterprise):
            raise ConfigurationError(
                "Tier discounts must be non-decreasing free -> premium -> enterprise",
                details=self.model_dump(),
            )
        return self


class HybridWeights(BaseModel):
    """Weights of the four recommendation signals; must sum to one."""

    model_config = ConfigDict(frozen=True)

    collaborative: float = 0.4
    content: float = 0.3
    popularity: float = 0.2
    business: float = 0.1

    @model_validator(mode="after")
    def _check_sum(self) -> "HybridWeights":
        check_weights("HybridWeights", self.model_dump())
        return self


class RecommenderConfig(BaseModel):
    """Tunables for the hybrid recommendation engine."""

    model_config = ConfigDict(frozen=True)

    weights: HybridWeights = Field(default_factory=HybridWeights)
    treatment_weights: HybridWeights = Field(
        default_factory=lambda: HybridWeights(
            collaborative=0.25, content=0.45, popularity=0.2, business=0.1
        )
    )
    default_count: int = Field(default=10, gt=0)
    default_diversity_weight: float = Field(default=0.3, ge=0.0)
    treatment_diversity_weight: float = Field(default=0.5, ge=0.0)
    diversity_penalty_scale: float = Field(default=0.1, ge=0.0)

    # Interaction strength
    engaged_view_seconds: float = Field(default=60.0, ge=0.0)

    # Popularity
    recency_half_life_days: float = Field(default=30.0, gt=0.0)
    usage_log_scale: float = Field(default=10.0, gt=0.0)

    # Business score: price_scale normalizes price, biases tilt the blend
    price_scale: float = Field(default=1000.0, gt=0.0)
    performance_scale: float = Field(default=100.0, gt=0.0)
    margin_bias: float = Field(default=0.5, ge=0.0)
    quality_bias: float = Field(default=0.5, ge=0.0)

    # Confidence
    user_interactions_for_full_confidence: int = Field(default=10, gt=0)
    item_usage_for_full_confidence: int = Field(default=100, gt=0)
    sparse_confidence_factor: float = Field(default=0.8, gt=0.0, lt=1.0)

    # Incremental profile updates
    profile_learning_rate: float = Field(default=0.05, gt=0.0, le=1.0)


class ProviderConfig(BaseModel):
    """Deadlines and worker pool size for external provider calls."""

    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = Field(default=2.0, gt=0.0)
    max_workers: int = Field(default=8, gt=0)

"""Shared data model for the pricing and recommendation engines.

Records crossing the provider boundary (item features, interactions,
constraints) are pydantic models; the pricing state is rebuilt per request
and never persisted.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marketintel.exceptions import ConfigurationError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class UserTier(str, Enum):
    """Customer tier, ordered from least to most discounted."""

    FREE = "free"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class DataSparsityCondition(str, Enum):
    """Reasons a recommendation call degrades to popularity-only scoring.

    This is a condition, not an error: the engine logs it, lowers confidence
    and still returns a usable ranking.
    """

    COLD_START_USER = "cold_start_user"
    NO_PERSONAL_SIGNAL = "no_personal_signal"
    HISTORY_UNAVAILABLE = "history_unavailable"


class PricingConstraints(BaseModel):
    """Catalog-owned pricing bounds for one item.

    Attributes:
        min_price: Hard price floor.
        max_price: Hard price ceiling.
        max_daily_change_fraction: Largest allowed move relative to the
            current price in a single decision.
        competitor_buffer_fraction: Largest allowed distance from the
            competitor average price, as a fraction of that average.
    """

    model_config = ConfigDict(frozen=True)

    min_price: float
    max_price: float
    max_daily_change_fraction: float = 0.10
    competitor_buffer_fraction: float = 0.10

    @model_validator(mode="after")
    def _check_bounds(self) -> "PricingConstraints":
        values = self.model_dump()
        if not all(math.isfinite(v) for v in values.values()):
            raise ConfigurationError(
                "Pricing constraints must be finite", details=values
            )
        if not 0 < self.min_price <= self.max_price:
            raise ConfigurationError(
                "Pricing constraints require 0 < min_price <= max_price",
                details=values,
            )
        for name in ("max_daily_change_fraction", "competitor_buffer_fraction"):
            if not 0.0 <= values[name] <= 1.0:
                raise ConfigurationError(
                    f"{name} must lie in [0, 1]", details=values
                )
        return self


class PricingState(BaseModel):
    """Point-in-time snapshot of everything needed to price one item."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    product_id: str
    current_price: float
    demand_forecast: float
    competitor_prices: Tuple[float, ...] = ()
    inventory_level: int = 0
    time_of_day_factor: float = 1.0
    day_of_week_factor: float = 1.0
    model_age_days: float = 0.0
    review_score: float = 0.0
    conversion_rate: float = 0.0
    price_elasticity: float = -1.2
    seasonal_factor: float = 1.0
    user_tier: UserTier = UserTier.FREE

    @property
    def competitor_average(self) -> Optional[float]:
        """Mean competitor price, or None when no competitor is known."""
        if not self.competitor_prices:
            return None
        return sum(self.competitor_prices) / len(self.competitor_prices)


class ItemFeatures(BaseModel):
    """Catalog features of a listed item."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    category: str
    tags: Tuple[str, ...] = ()
    price: float = Field(ge=0.0)
    complexity: float = 0.0
    performance: float = 0.0
    usage_count: int = Field(default=0, ge=0)
    average_rating: float = Field(default=0.0, ge=0.0, le=5.0)
    created_at: datetime = Field(default_factory=utc_now)
    inventory_level: int = 0
    conversion_rate: float = Field(default=0.0, ge=0.0, le=1.0)


class UserInteraction(BaseModel):
    """A single user/item interaction event. Appended, never mutated."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    item_id: str
    rating: Optional[float] = Field(default=None, ge=0.0, le=5.0)
    purchased: bool = False
    viewed: bool = False
    time_spent: float = Field(default=0.0, ge=0.0)
    timestamp: datetime = Field(default_factory=utc_now)


class RecommendationResult(BaseModel):
    """One ranked recommendation, produced per call and never stored."""

    item_id: str
    score: float
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)


def age_in_days(created_at: datetime, now: datetime) -> float:
    """Days elapsed between ``created_at`` and ``now``.

    Naive datetimes are taken to be UTC.
    """
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max(0.0, (now - created_at).total_seconds() / 86400.0)

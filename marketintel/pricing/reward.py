"""Multi-objective reward for pricing actions."""

from typing import NamedTuple, Optional

from marketintel.config import RewardWeights
from marketintel.models import PricingState


# Weight of the price-pressure term in customer satisfaction
PRICE_PRESSURE_WEIGHT = 0.5
# Market-share blend of competitive advantage and quality
MARKET_SHARE_COMPETITIVE_WEIGHT = 0.7
MARKET_SHARE_QUALITY_WEIGHT = 0.3


class RewardBreakdown(NamedTuple):
    revenue: float
    competitive: float
    satisfaction: float
    market_share: float
    total: float


class RewardCalculator:
    """Scores the outcome of moving a product from ``old_price`` to ``new_price``."""

    def __init__(self, weights: Optional[RewardWeights] = None):
        self.weights = weights or RewardWeights()

    @staticmethod
    def revenue_impact(old_price: float, new_price: float, state: PricingState) -> float:
        """Price change fraction plus the elasticity-implied demand change."""
        price_change = (new_price - old_price) / old_price
        expected_demand_change = price_change * state.price_elasticity
        return price_change + expected_demand_change

    @staticmethod
    def competitive_advantage(new_price: float, state: PricingState) -> float:
        """Relative discount to the competitor average; 0 without competitors."""
        average = state.competitor_average
        if average is None:
            return 0.0
        return (average - new_price) / average

    @staticmethod
    def customer_satisfaction(
        old_price: float, new_price: float, state: PricingState
    ) -> float:
        """Normalized rating minus price pressure relative to the current price."""
        quality = state.review_score / 5
        return quality - PRICE_PRESSURE_WEIGHT * (new_price / old_price)

    def market_share_impact(self, new_price: float, state: PricingState) -> float:
        quality = state.review_score / 5
        return (
            MARKET_SHARE_COMPETITIVE_WEIGHT * self.competitive_advantage(new_price, state)
            + MARKET_SHARE_QUALITY_WEIGHT * quality
        )

    def calculate(
        self, old_price: float, new_price: float, state: PricingState
    ) -> RewardBreakdown:
        """Weighted sum of the four reward components."""
        revenue = self.revenue_impact(old_price, new_price, state)
        competitive = self.competitive_advantage(new_price, state)
        satisfaction = self.customer_satisfaction(old_price, new_price, state)
        market_share = self.market_share_impact(new_price, state)

        w = self.weights
        total = (
            w.revenue * revenue
            + w.competitive * competitive
            + w.satisfaction * satisfaction
            + w.market_share * market_share
        )
        return RewardBreakdown(revenue, competitive, satisfaction, market_share, total)

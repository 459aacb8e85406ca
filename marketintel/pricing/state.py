"""Pricing state assembly and discretization.

Builds a ``PricingState`` for one product from catalog and market data, and
encodes it into the discrete key used as a Q-table row.

Demand forecast
    Simple exponential smoothing (alpha 0.3) of the historical demand series,
    scaled by the recent trend, the seasonal factor, the external market
    factor and the time-of-day/day-of-week factors, then expressed relative
    to the historical peak and clipped to [0, 1].

Price elasticity
    Least-squares slope of period-over-period demand change on price change,
    using observed price and demand history aligned on their timestamps.
"""

import logging
import math
from datetime import datetime
from typing import Callable, Optional

import numpy as np
import pandas as pd

from marketintel.exceptions import InvalidStateError
from marketintel.models import PricingState, UserTier, age_in_days, utc_now
from marketintel.providers import CatalogProvider, MarketDataProvider, ProviderGateway

# Configure module logger
logger = logging.getLogger(__name__)

SMOOTHING_ALPHA = 0.3
TREND_WINDOW = 7
DEFAULT_ELASTICITY = -1.2
NEUTRAL_DEMAND = 0.5

# (first hour, factor) for each part of the day
TIME_OF_DAY_FACTORS = ((0, 0.8), (6, 1.0), (12, 1.1), (18, 1.05))
# Monday=0 ... Sunday=6
DAY_OF_WEEK_FACTORS = (1.0, 1.0, 1.0, 1.0, 1.05, 1.1, 1.1)


def time_of_day_factor(now: datetime) -> float:
    factor = TIME_OF_DAY_FACTORS[0][1]
    for first_hour, value in TIME_OF_DAY_FACTORS:
        if now.hour >= first_hour:
            factor = value
    return factor


def day_of_week_factor(now: datetime) -> float:
    return DAY_OF_WEEK_FACTORS[now.weekday()]


def calculate_trend(demand: pd.Series, window: int = TREND_WINDOW) -> float:
    """Mean period-over-period change over the most recent ``window`` periods."""
    changes = (
        demand.astype(float)
        .pct_change()
        .replace([np.inf, -np.inf], np.nan)
        .dropna()
        .tail(window)
    )
    if changes.empty:
        return 0.0
    return float(changes.mean())


def seasonal_factor(demand: pd.Series, now: datetime) -> float:
    """Mean demand in the current calendar month relative to overall mean.

    Returns 1.0 unless the series has a datetime index covering this month.
    """
    if demand.empty or not isinstance(demand.index, pd.DatetimeIndex):
        return 1.0
    overall = float(demand.mean())
    in_month = demand[demand.index.month == now.month]
    if in_month.empty or overall <= 0:
        return 1.0
    return float(in_month.mean()) / overall


def forecast_demand(
    demand: pd.Series,
    seasonal: float = 1.0,
    external: float = 1.0,
    time_factor: float = 1.0,
) -> float:
    """Relative demand forecast in [0, 1].

    Args:
        demand: Historical units demanded per period.
        seasonal: Seasonal multiplier.
        external: External market multiplier.
        time_factor: Combined time-of-day and day-of-week multiplier.

    Returns:
        Forecast divided by the historical peak, clipped to [0, 1].
        ``NEUTRAL_DEMAND`` when there is no usable history. Non-finite
        multipliers propagate so that state validation can reject them.
    """
    demand = demand.astype(float).dropna()
    peak = float(demand.max()) if not demand.empty else 0.0
    if demand.empty or peak <= 0:
        return NEUTRAL_DEMAND

    level = float(demand.ewm(alpha=SMOOTHING_ALPHA, adjust=False).mean().iloc[-1])
    trend = calculate_trend(demand)
    forecast = level * (1 + trend) * seasonal * external * time_factor
    if not math.isfinite(forecast):
        return forecast
    return float(np.clip(forecast / peak, 0.0, 1.0))


def estimate_elasticity(
    prices: pd.Series,
    demand: pd.Series,
    default: float = DEFAULT_ELASTICITY,
) -> float:
    """Price elasticity of demand from observed history.

    Aligns the two series on their shared index, takes period-over-period
    percentage changes and returns the least-squares slope of demand change
    on price change. Falls back to ``default`` with fewer than two usable
    changes or when the price never moved.
    """
    if prices.empty or demand.empty:
        return default

    frame = pd.concat(
        {"price": prices.astype(float), "demand": demand.astype(float)},
        axis=1,
        join="inner",
    ).sort_index()
    changes = frame.pct_change().replace([np.inf, -np.inf], np.nan).dropna()
    if len(changes) < 2:
        return default

    price_variance = float(changes["price"].var())
    if not math.isfinite(price_variance) or price_variance == 0:
        return default
    return float(changes["price"].cov(changes["demand"]) / price_variance)


def validate_state(state: PricingState) -> None:
    """Reject non-finite or out-of-range pricing inputs.

    Raises:
        InvalidStateError: On the first offending field.
    """
    pid = state.product_id
    checks = (
        ("current_price", state.current_price, lambda v: v > 0),
        ("demand_forecast", state.demand_forecast, lambda v: v >= 0),
        ("conversion_rate", state.conversion_rate, lambda v: 0 <= v <= 1),
        ("review_score", state.review_score, lambda v: 0 <= v <= 5),
        ("model_age_days", state.model_age_days, lambda v: v >= 0),
        ("price_elasticity", state.price_elasticity, lambda v: True),
        ("seasonal_factor", state.seasonal_factor, lambda v: v > 0),
        ("time_of_day_factor", state.time_of_day_factor, lambda v: v > 0),
        ("day_of_week_factor", state.day_of_week_factor, lambda v: v > 0),
    )
    for field, value, in_range in checks:
        if not math.isfinite(value) or not in_range(value):
            raise InvalidStateError(pid, field, value)
    for price in state.competitor_prices:
        if not math.isfinite(price) or price <= 0:
            raise InvalidStateError(pid, "competitor_prices", state.competitor_prices)


def encode_state(state: PricingState) -> str:
    """Discretize a pricing state into its Q-table key.

    Key parts: demand decile, conversion-rate percentile, rounded review
    score, age in weeks, user tier.

    Raises:
        InvalidStateError: If the state fails validation.
    """
    validate_state(state)
    parts = (
        min(math.floor(state.demand_forecast * 10), 9),
        math.floor(state.conversion_rate * 100),
        math.floor(state.review_score + 0.5),
        math.floor(state.model_age_days / 7),
        state.user_tier.value,
    )
    return "_".join(str(part) for part in parts)


def successor_state(state: PricingState, new_price: float) -> PricingState:
    """State expected after moving the price to ``new_price``.

    Demand and conversion respond to the relative price change through the
    state's elasticity; everything else carries over.
    """
    change = (new_price - state.current_price) / state.current_price
    response = 1 + state.price_elasticity * change
    return state.model_copy(
        update={
            "current_price": new_price,
            "demand_forecast": float(np.clip(state.demand_forecast * response, 0.0, 1.0)),
            "conversion_rate": float(np.clip(state.conversion_rate * response, 0.0, 1.0)),
        }
    )


class PricingStateBuilder:
    """Assembles a fresh ``PricingState`` per pricing request."""

    def __init__(
        self,
        catalog: CatalogProvider,
        market: MarketDataProvider,
        gateway: Optional[ProviderGateway] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.catalog = catalog
        self.market = market
        self.gateway = gateway or ProviderGateway()
        self.clock = clock

    def build(
        self,
        product_id: str,
        user_tier: UserTier = UserTier.FREE,
    ) -> Optional[PricingState]:
        """Build the pricing state for a product.

        Returns:
            The state, or None when the catalog has no features for the
            product (unknown item, or catalog unavailable with nothing cached).
        """
        fetch = self.gateway.fetch
        features = fetch(
            "catalog.get_item_features", product_id,
            self.catalog.get_item_features, product_id,
        )
        if features is None:
            logger.warning(
                "No catalog features for product",
                extra={"product_id": product_id},
            )
            return None

        competitor_prices = fetch(
            "market.get_competitor_prices", product_id,
            self.market.get_competitor_prices, product_id,
            default=[],
        )
        demand = fetch(
            "market.get_historical_demand", product_id,
            self.market.get_historical_demand, product_id,
            default=pd.Series(dtype=float),
        )
        price_history = fetch(
            "market.get_price_history", product_id,
            self.market.get_price_history, product_id,
            default=pd.Series(dtype=float),
        )
        external = fetch(
            "market.get_external_factors", product_id,
            self.market.get_external_factors, product_id,
            default=1.0,
        )

        now = self.clock()
        tod = time_of_day_factor(now)
        dow = day_of_week_factor(now)
        seasonal = seasonal_factor(demand, now)

        state = PricingState(
            product_id=product_id,
            current_price=features.price,
            demand_forecast=forecast_demand(demand, seasonal, float(external), tod * dow),
            competitor_prices=tuple(float(p) for p in competitor_prices),
            inventory_level=features.inventory_level,
            time_of_day_factor=tod,
            day_of_week_factor=dow,
            model_age_days=age_in_days(features.created_at, now),
            review_score=features.average_rating,
            conversion_rate=features.conversion_rate,
            price_elasticity=estimate_elasticity(price_history, demand),
            seasonal_factor=seasonal,
            user_tier=user_tier,
        )
        logger.debug(
            "Built pricing state",
            extra={"product_id": product_id, "state": state.model_dump(mode="json")},
        )
        return state

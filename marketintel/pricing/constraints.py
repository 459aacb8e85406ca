"""Business constraints applied to a proposed price.

Stages run in a fixed order and each one narrows the admissible price band:

1. hard ``[min_price, max_price]`` bounds;
2. the daily-change band around the current price;
3. the competitor band around the competitor average (only when competitor
   prices are known);
4. the tier fairness discount.

A stage whose band does not overlap the band built so far cannot be met
without breaking an earlier stage; the price then stays in the current band
at the edge nearest to the requested one. The fairness discount is applied
last and is only floored at the lower edge of the final band, so a higher
tier never pays more than a lower one.
"""

import logging
import threading
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from marketintel.config import FairnessConfig
from marketintel.exceptions import MissingConstraintsError
from marketintel.models import PricingConstraints, PricingState, UserTier

# Configure module logger
logger = logging.getLogger(__name__)

Band = Tuple[float, float]


class EnforcedPrice(NamedTuple):
    """Outcome of constraint enforcement."""

    price: float
    pre_fairness_price: float
    band: Band
    adjustments: List[str]


class ConstraintRegistry:
    """Catalog-owned pricing constraints, one record per product."""

    def __init__(self, constraints: Optional[Dict[str, PricingConstraints]] = None):
        self._constraints: Dict[str, PricingConstraints] = dict(constraints or {})
        self._lock = threading.Lock()

    def set(self, product_id: str, constraints: PricingConstraints) -> None:
        with self._lock:
            self._constraints[product_id] = constraints

    def get(self, product_id: str) -> PricingConstraints:
        """Constraints for a product.

        Raises:
            MissingConstraintsError: If the product has no record.
        """
        with self._lock:
            constraints = self._constraints.get(product_id)
        if constraints is None:
            raise MissingConstraintsError(product_id)
        return constraints

    def product_ids(self) -> Iterable[str]:
        with self._lock:
            return list(self._constraints)


def _narrow(band: Band, lower: float, upper: float, stage: str) -> Band:
    current_lo, current_hi = band
    new_lo, new_hi = max(current_lo, lower), min(current_hi, upper)
    if new_lo <= new_hi:
        return new_lo, new_hi

    edge = current_hi if lower > current_hi else current_lo
    logger.warning(
        f"{stage} band does not overlap admissible band, pinning to edge",
        extra={
            "stage": stage,
            "requested_band": [lower, upper],
            "admissible_band": [current_lo, current_hi],
            "edge": edge,
        },
    )
    return edge, edge


def _clamp(price: float, band: Band) -> float:
    return min(max(price, band[0]), band[1])


class ConstraintEnforcer:
    """Clamps proposed prices and applies tier fairness discounts."""

    def __init__(self, fairness: Optional[FairnessConfig] = None):
        self.fairness = fairness or FairnessConfig()

    def tier_discount(self, tier: UserTier) -> float:
        return {
            UserTier.FREE: self.fairness.free,
            UserTier.PREMIUM: self.fairness.premium,
            UserTier.ENTERPRISE: self.fairness.enterprise,
        }[tier]

    def enforce(
        self,
        proposed_price: float,
        state: PricingState,
        constraints: PricingConstraints,
    ) -> EnforcedPrice:
        """Apply all constraint stages to ``proposed_price``.

        Args:
            proposed_price: Raw price from the pricing agent.
            state: Pricing state the proposal was made in.
            constraints: The product's pricing constraints.

        Returns:
            The final price, the price before the fairness discount, the
            admissible band and the names of stages that moved the price.
        """
        adjustments: List[str] = []
        price = proposed_price

        band: Band = (constraints.min_price, constraints.max_price)
        price = self._apply(price, band, "hard_bounds", adjustments)

        max_change = state.current_price * constraints.max_daily_change_fraction
        band = _narrow(
            band,
            state.current_price - max_change,
            state.current_price + max_change,
            "daily_change",
        )
        price = self._apply(price, band, "daily_change", adjustments)

        competitor_average = state.competitor_average
        if competitor_average is not None:
            buffer = competitor_average * constraints.competitor_buffer_fraction
            band = _narrow(
                band,
                competitor_average - buffer,
                competitor_average + buffer,
                "competitor_buffer",
            )
            price = self._apply(price, band, "competitor_buffer", adjustments)

        pre_fairness_price = price
        discount = self.tier_discount(state.user_tier)
        if discount > 0:
            price = max(price * (1 - discount), band[0])
            adjustments.append(f"{state.user_tier.value}_discount")

        return EnforcedPrice(price, pre_fairness_price, band, adjustments)

    @staticmethod
    def _apply(price: float, band: Band, stage: str, adjustments: List[str]) -> float:
        clamped = _clamp(price, band)
        if clamped != price:
            adjustments.append(stage)
        return clamped

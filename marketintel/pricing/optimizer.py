"""Q-learning price optimizer.

The optimizer encodes the pricing state, picks a ``PriceAction`` with an
epsilon-greedy policy, clamps the resulting price, scores the outcome and
applies the Q-learning update

    Q[s, a] += alpha * (reward + gamma * future_value - Q[s, a])

``future_value`` bootstraps from the Q-table: it is the best known value of
the state reached after moving to the new price (see
``state.successor_state``), or 0.0 when that state has never been visited.
"""

import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel

from marketintel.config import FairnessConfig, QLearningConfig, RewardWeights
from marketintel.exceptions import MarketIntelError
from marketintel.experiment import AGGRESSIVE, CONSERVATIVE, CONTROL
from marketintel.metrics import MetricsService
from marketintel.models import PricingConstraints, PricingState, UserTier
from marketintel.pricing.actions import PriceAction
from marketintel.pricing.constraints import ConstraintEnforcer, ConstraintRegistry
from marketintel.pricing.qtable import QTableStore
from marketintel.pricing.reward import RewardCalculator
from marketintel.pricing.state import PricingStateBuilder, encode_state, successor_state

# Configure module logger
logger = logging.getLogger(__name__)

# Confidence for states the agent has never learned anything about
UNSEEN_STATE_CONFIDENCE = 0.5
CONFIDENCE_SMOOTHING = 0.1
# Price change (percent) above which the reasoning calls out a move
REASONING_THRESHOLD_PCT = 5.0
DEFAULT_MIN_CHANGE = 0.02

TEST_GROUP_SCALES = {
    CONTROL: 1.0,
    AGGRESSIVE: 1.1,
    CONSERVATIVE: 0.9,
}


class PricingDecision(BaseModel):
    """Result of a pricing call.

    ``multiplier``, ``reasoning`` and ``confidence`` are the storefront
    contract; the remaining fields explain how the price was reached.
    """

    product_id: str
    multiplier: float
    reasoning: str
    confidence: float
    price: Optional[float] = None
    pre_fairness_price: Optional[float] = None
    proposed_price: Optional[float] = None
    action: Optional[PriceAction] = None
    state_key: Optional[str] = None
    explored: bool = False
    reward: Optional[float] = None
    adjustments: List[str] = []
    fallback: bool = False


def generate_reasoning(state: PricingState, new_price: float, adjustments: List[str]) -> str:
    price_change = (new_price - state.current_price) / state.current_price * 100

    if price_change > REASONING_THRESHOLD_PCT:
        reasoning = (
            f"Increased price by {price_change:.1f}% due to high demand "
            "and strong reviews"
        )
    elif price_change < -REASONING_THRESHOLD_PCT:
        reasoning = (
            f"Decreased price by {abs(price_change):.1f}% to improve competitiveness"
        )
    else:
        reasoning = "Price maintained with minor adjustment based on market conditions"

    limits = [a.replace("_", " ") for a in adjustments]
    if limits:
        reasoning += f" (applied: {', '.join(limits)})"
    return reasoning


class PricingOptimizer:
    """Epsilon-greedy Q-learning agent choosing price multipliers.

    Thread safety: calls for different products (different state keys) run
    concurrently. Selection and update for one state key happen under that
    key's Q-table lock, so concurrent calls landing on the same row are
    serialized and no update is lost.
    """

    def __init__(
        self,
        state_builder: PricingStateBuilder,
        constraints: ConstraintRegistry,
        q_table: Optional[QTableStore] = None,
        config: Optional[QLearningConfig] = None,
        reward_weights: Optional[RewardWeights] = None,
        fairness: Optional[FairnessConfig] = None,
        metrics: Optional[MetricsService] = None,
    ):
        self.state_builder = state_builder
        self.constraints = constraints
        self.q_table = q_table if q_table is not None else QTableStore()
        self.config = config or QLearningConfig()
        self.reward_calculator = RewardCalculator(reward_weights)
        self.enforcer = ConstraintEnforcer(fairness)
        self.metrics = metrics or MetricsService()

        self._rng = np.random.default_rng(self.config.random_seed)
        self._rng_lock = threading.Lock()
        self._history_lock = threading.Lock()
        self._reward_history: Deque[float] = deque(
            maxlen=self.config.reward_history_size
        )
        self._last_decisions: Dict[Tuple[str, UserTier], PricingDecision] = {}

        logger.info(
            f"PricingOptimizer initialized: LR={self.config.learning_rate}, "
            f"Gamma={self.config.discount_factor}, "
            f"Epsilon={self.config.exploration_rate}"
        )

    # ----- public API -----

    def optimize_price(
        self,
        product_id: str,
        user_tier: UserTier = UserTier.FREE,
    ) -> PricingDecision:
        """Choose a price multiplier for a product and learn from it.

        Args:
            product_id: Product to price.
            user_tier: Tier of the customer the price is shown to.

        Returns:
            The decision. Its ``multiplier`` is final price / current price.

        Raises:
            ConfigurationError: If the product has no pricing constraints.
            InvalidStateError: If the assembled state is malformed. The
                Q-table is left untouched.
        """
        with self.metrics.timed("optimize_price"):
            decision = self._decide(product_id, user_tier, learn=True)

        with self._history_lock:
            self._last_decisions[(product_id, user_tier)] = decision
        return decision

    def propose_price(
        self,
        product_id: str,
        user_tier: UserTier = UserTier.FREE,
    ) -> PricingDecision:
        """Greedy decision for a product without exploring or learning."""
        with self.metrics.timed("propose_price"):
            return self._decide(product_id, user_tier, learn=False)

    def get_test_price(
        self,
        product_id: str,
        group: str,
        user_tier: UserTier = UserTier.FREE,
    ) -> float:
        """Multiplier for a pricing experiment arm.

        Scales the base multiplier by +10% (aggressive), -10% (conservative)
        or not at all (control). The base is the last ``optimize_price``
        result for this product and tier, or a greedy proposal when there is
        none; this call never updates the Q-table.

        Raises:
            ValueError: If ``group`` is not a pricing arm.
        """
        if group not in TEST_GROUP_SCALES:
            raise ValueError(
                f"Unknown pricing test group '{group}', "
                f"expected one of {sorted(TEST_GROUP_SCALES)}"
            )

        with self._history_lock:
            base = self._last_decisions.get((product_id, user_tier))
        if base is None:
            base = self.propose_price(product_id, user_tier)

        return base.multiplier * TEST_GROUP_SCALES[group]

    def reprice_catalog(
        self,
        product_ids: Optional[List[str]] = None,
        user_tier: UserTier = UserTier.FREE,
        min_change: float = DEFAULT_MIN_CHANGE,
    ) -> Tuple[List[PricingDecision], Dict[str, str]]:
        """Optimize every product and keep the significant moves.

        Args:
            product_ids: Products to reprice (default: every product with
                registered constraints).
            user_tier: Tier used for the repricing run.
            min_change: Minimum |multiplier - 1| for a decision to be kept.

        Returns:
            Decisions that moved the price by more than ``min_change``, and a
            mapping of product id to error message for products that failed.
        """
        if product_ids is None:
            product_ids = list(self.constraints.product_ids())

        logger.info(f"Repricing {len(product_ids)} products")

        updates: List[PricingDecision] = []
        errors: Dict[str, str] = {}
        for product_id in product_ids:
            try:
                decision = self.optimize_price(product_id, user_tier)
            except MarketIntelError as e:
                logger.error(
                    f"Pricing update failed for product {product_id}: {e.message}",
                    extra={"product_id": product_id, **e.details},
                )
                errors[product_id] = e.message
                continue

            if not decision.fallback and abs(decision.multiplier - 1) > min_change:
                updates.append(decision)

        logger.info(
            f"Repricing completed: {len(updates)} updated, {len(errors)} errors"
        )
        return updates, errors

    def average_reward(self) -> float:
        """Mean of the recent rewards (0.0 before any learning)."""
        with self._history_lock:
            if not self._reward_history:
                return 0.0
            return float(np.mean(self._reward_history))

    def reset(self) -> None:
        """Forget the Q-table, reward history and cached decisions."""
        self.q_table.reset()
        with self._history_lock:
            self._reward_history.clear()
            self._last_decisions.clear()

    # ----- internals -----

    def _decide(self, product_id: str, user_tier: UserTier, learn: bool) -> PricingDecision:
        constraints = self.constraints.get(product_id)
        state = self.state_builder.build(product_id, user_tier)
        if state is None:
            return self._list_price_decision(product_id)

        # Validation happens here, before any Q-table access
        state_key = encode_state(state)

        with self.q_table.locked(state_key):
            row = self.q_table.row(state_key)
            action, explored = self._select_action(row, explore=learn)
            proposed = state.current_price * action.multiplier
            enforced = self.enforcer.enforce(proposed, state, constraints)
            confidence = self._confidence(row, action)

            reward = None
            if learn:
                reward = self._learn(state, state_key, action, row, enforced.price)

        decision = PricingDecision(
            product_id=product_id,
            multiplier=enforced.price / state.current_price,
            reasoning=generate_reasoning(state, enforced.price, enforced.adjustments),
            confidence=confidence,
            price=enforced.price,
            pre_fairness_price=enforced.pre_fairness_price,
            proposed_price=proposed,
            action=action,
            state_key=state_key,
            explored=explored,
            reward=reward,
            adjustments=enforced.adjustments,
        )

        logger.info(
            "Price decision",
            extra={
                "product_id": product_id,
                "user_tier": user_tier.value,
                "state_key": state_key,
                "action": action.name,
                "explored": explored,
                "multiplier": round(decision.multiplier, 4),
                "confidence": round(confidence, 4),
                "learned": learn,
            },
        )
        return decision

    def _select_action(
        self, row: Dict[PriceAction, float], explore: bool
    ) -> Tuple[PriceAction, bool]:
        if explore:
            with self._rng_lock:
                roll = self._rng.random()
                random_index = int(self._rng.integers(len(PriceAction)))
            if roll < self.config.exploration_rate:
                self.metrics.increment("explorations")
                return PriceAction.from_index(random_index), True

        # Strict > keeps the first (smallest change) action on ties
        best_action = PriceAction.HOLD
        best_value = -np.inf
        for action in PriceAction:
            value = row.get(action, 0.0)
            if value > best_value:
                best_action, best_value = action, value
        return best_action, False

    @staticmethod
    def _confidence(row: Dict[PriceAction, float], action: PriceAction) -> float:
        if not row:
            return UNSEEN_STATE_CONFIDENCE
        denominator = max(row.values()) + CONFIDENCE_SMOOTHING
        if denominator <= 0:
            return UNSEEN_STATE_CONFIDENCE
        return float(np.clip(row.get(action, 0.0) / denominator, 0.0, 1.0))

    def _estimate_future_value(self, state: PricingState, new_price: float) -> float:
        """Best known value of the state reached at ``new_price``."""
        next_key = encode_state(successor_state(state, new_price))
        best = self.q_table.best_value(next_key)
        return 0.0 if best is None else best

    def _learn(
        self,
        state: PricingState,
        state_key: str,
        action: PriceAction,
        row: Dict[PriceAction, float],
        new_price: float,
    ) -> float:
        # Caller holds the row lock for state_key
        reward = self.reward_calculator.calculate(state.current_price, new_price, state)
        future_value = self._estimate_future_value(state, new_price)

        current_q = row.get(action, 0.0)
        td_target = reward.total + self.config.discount_factor * future_value
        td_error = td_target - current_q
        new_q = current_q + self.config.learning_rate * td_error
        self.q_table.set_value(state_key, action, new_q)

        with self._history_lock:
            self._reward_history.append(reward.total)

        logger.debug(
            f"Q-update: State={state_key}, Action={action.name}, "
            f"Reward={reward.total:.3f}, Future={future_value:.3f}, "
            f"TD_Error={td_error:.3f}, New Q={new_q:.3f}"
        )
        return reward.total

    def _list_price_decision(self, product_id: str) -> PricingDecision:
        # Cold-start item: keep the list price, learn nothing
        self.metrics.increment("list_price_fallbacks")
        logger.warning(
            "Falling back to list price",
            extra={"product_id": product_id},
        )
        return PricingDecision(
            product_id=product_id,
            multiplier=1.0,
            reasoning="List price kept: catalog data unavailable",
            confidence=0.0,
            fallback=True,
        )

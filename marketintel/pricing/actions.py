"""Discrete price adjustment actions."""

from enum import Enum


class PriceAction(Enum):
    """Price multipliers available to the pricing agent.

    Members are ordered by size of the price change, so the lowest index is
    always the most conservative move. Greedy selection breaks ties in this
    order.
    """

    HOLD = (0, 1.0)
    DECREASE_SMALL = (1, 0.9)
    INCREASE_SMALL = (2, 1.1)
    DECREASE_LARGE = (3, 0.8)
    INCREASE_LARGE = (4, 1.2)

    def __init__(self, index: int, multiplier: float):
        self.index = index
        self.multiplier = multiplier

    @classmethod
    def from_index(cls, index: int) -> "PriceAction":
        for action in cls:
            if action.index == index:
                return action
        raise ValueError(f"No price action with index {index}")

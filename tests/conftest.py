"""Shared fixtures for the MarketIntel test suite.

Builds small in-memory catalogs, market data and interaction histories with
a fixed clock so every test is reproducible.
"""

import logging
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from marketintel.config import ProviderConfig, QLearningConfig
from marketintel.models import ItemFeatures, PricingConstraints, UserInteraction
from marketintel.pricing.constraints import ConstraintRegistry
from marketintel.pricing.optimizer import PricingOptimizer
from marketintel.pricing.state import PricingStateBuilder
from marketintel.providers import (
    InMemoryCatalog,
    InMemoryEmbeddingProvider,
    InMemoryMarketData,
    ProviderGateway,
)
from marketintel.recommender.engine import HybridRecommender
from marketintel.recommender.interactions import InMemoryInteractionStore

# Wednesday afternoon: time-of-day factor 1.1, day-of-week factor 1.0
NOW = datetime(2026, 3, 4, 14, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def gateway():
    """Provider gateway with a generous deadline."""
    gw = ProviderGateway(ProviderConfig(timeout_seconds=5.0))
    yield gw
    gw.shutdown()


# ===== Pricing fixtures =====


@pytest.fixture
def pricing_catalog():
    """Catalog with one well-reviewed product listed at 100."""
    return InMemoryCatalog([
        ItemFeatures(
            item_id="p1",
            category="vision",
            price=100.0,
            performance=80.0,
            usage_count=250,
            average_rating=4.2,
            conversion_rate=0.05,
            inventory_level=40,
            created_at=NOW - timedelta(days=30),
        ),
    ])


@pytest.fixture
def pricing_market():
    """Three competitors averaging 95, no demand history."""
    return InMemoryMarketData(competitor_prices={"p1": [90.0, 95.0, 100.0]})


@pytest.fixture
def pricing_constraints():
    """Constraints from the reference pricing scenario."""
    return ConstraintRegistry({
        "p1": PricingConstraints(
            min_price=80.0,
            max_price=150.0,
            max_daily_change_fraction=0.10,
            competitor_buffer_fraction=0.10,
        ),
    })


@pytest.fixture
def make_optimizer(pricing_catalog, pricing_market, pricing_constraints, gateway):
    """Factory for optimizers sharing the pricing fixtures."""

    def _make(exploration_rate: float = 0.0, seed: int = 42, **kwargs) -> PricingOptimizer:
        builder = PricingStateBuilder(
            kwargs.pop("catalog", pricing_catalog),
            kwargs.pop("market", pricing_market),
            gateway,
            clock=fixed_clock,
        )
        return PricingOptimizer(
            state_builder=builder,
            constraints=kwargs.pop("constraints", pricing_constraints),
            config=QLearningConfig(exploration_rate=exploration_rate, random_seed=seed),
            **kwargs,
        )

    return _make


# ===== Recommendation fixtures =====


CATALOG_ITEMS = [
    # item_id, category, usage, rating, price, performance, age_days
    ("i1", "vision", 500, 4.8, 200.0, 90.0, 10),
    ("i2", "vision", 300, 4.5, 150.0, 85.0, 40),
    ("i3", "vision", 250, 4.4, 120.0, 80.0, 60),
    ("i4", "nlp", 120, 4.1, 90.0, 70.0, 20),
    ("i5", "nlp", 60, 3.9, 60.0, 65.0, 90),
    ("i6", "audio", 15, 3.6, 40.0, 50.0, 5),
    ("i7", "audio", 5, 3.0, 30.0, 40.0, 120),
    ("i8", "vision", 400, 4.7, 180.0, 88.0, 15),
    ("i9", "nlp", 200, 4.3, 110.0, 75.0, 30),
    ("i10", "tabular", 80, 4.0, 70.0, 60.0, 45),
]

CATEGORY_DIRECTIONS = {
    "vision": [1.0, 0.0, 0.0, 0.0],
    "nlp": [0.0, 1.0, 0.0, 0.0],
    "audio": [0.0, 0.0, 1.0, 0.0],
    "tabular": [0.0, 0.0, 0.0, 1.0],
}


@pytest.fixture
def rec_catalog():
    """Ten items across four categories."""
    return InMemoryCatalog([
        ItemFeatures(
            item_id=item_id,
            category=category,
            price=price,
            performance=performance,
            usage_count=usage,
            average_rating=rating,
            created_at=NOW - timedelta(days=age_days),
        )
        for item_id, category, usage, rating, price, performance, age_days in CATALOG_ITEMS
    ])


@pytest.fixture
def rec_embeddings():
    """Category-aligned embeddings with a small per-item offset."""
    rng = np.random.default_rng(7)
    vectors = {}
    for item_id, category, *_ in CATALOG_ITEMS:
        base = np.asarray(CATEGORY_DIRECTIONS[category])
        vectors[item_id] = base + 0.05 * rng.random(4)
    return InMemoryEmbeddingProvider(vectors)


@pytest.fixture
def interaction_store():
    """Interaction history for five users with distinct tastes."""
    store = InMemoryInteractionStore()
    histories = {
        "u1": [("i1", True), ("i2", False)],
        "u2": [("i4", True), ("i9", False), ("i5", False)],
        "u3": [("i1", True), ("i8", True), ("i4", False)],
        "u4": [("i6", True), ("i7", False)],
        "u5": [("i2", True), ("i3", True), ("i8", False), ("i10", False)],
    }
    for user_id, events in histories.items():
        for item_id, purchased in events:
            store.append_interaction(
                UserInteraction(
                    user_id=user_id,
                    item_id=item_id,
                    purchased=purchased,
                    viewed=True,
                    time_spent=90.0 if purchased else 20.0,
                    timestamp=NOW - timedelta(days=3),
                )
            )
    return store


@pytest.fixture
def recommender(rec_catalog, interaction_store, rec_embeddings, gateway):
    """Recommender with a trained factor model."""
    engine = HybridRecommender(
        catalog=rec_catalog,
        interactions=interaction_store,
        embeddings=rec_embeddings,
        gateway=gateway,
        clock=fixed_clock,
    )
    engine.retrain(n_components=2)
    return engine

"""End-to-end tests through the storefront facade."""

import pytest

from marketintel.config import QLearningConfig
from marketintel.experiment import PRICING_ARMS, Experiment, ExperimentRouter
from marketintel.models import ItemFeatures, PricingConstraints, UserInteraction, UserTier
from marketintel.providers import InMemoryCatalog, InMemoryMarketData
from marketintel.service import MarketplaceIntelligence

from conftest import NOW, fixed_clock


@pytest.fixture
def facade(rec_catalog, interaction_store, rec_embeddings, pricing_market):
    """Facade pricing p1 and recommending from the ten-item catalog."""
    catalog = InMemoryCatalog(
        [rec_catalog.get_item_features(i) for i in rec_catalog.list_item_ids()]
    )
    catalog.upsert(ItemFeatures(
        item_id="p1",
        category="vision",
        price=100.0,
        average_rating=4.2,
        conversion_rate=0.05,
        created_at=NOW,
    ))
    router = ExperimentRouter([
        Experiment(experiment_id="rec-v2"),
        Experiment(experiment_id="price-v1", arms=PRICING_ARMS),
    ])
    service = MarketplaceIntelligence(
        catalog=catalog,
        market=pricing_market,
        constraints={"p1": PricingConstraints(min_price=80.0, max_price=150.0)},
        interactions=interaction_store,
        embeddings=rec_embeddings,
        router=router,
        qlearning_config=QLearningConfig(exploration_rate=0.0),
        clock=fixed_clock,
    )
    service.recommender.retrain(n_components=2)
    yield service
    service.shutdown()


def test_optimize_and_test_price(facade):
    decision = facade.optimize_price("p1", UserTier.PREMIUM)
    assert decision.multiplier == pytest.approx(0.95)
    assert facade.get_test_price("p1", "aggressive", UserTier.PREMIUM) == pytest.approx(
        0.95 * 1.1
    )


def test_price_for_experiment_uses_assigned_arm(facade):
    arm = facade.router.assign("price-v1", "p1")
    expected = facade.get_test_price("p1", arm)
    assert facade.price_for_experiment("price-v1", "p1") == pytest.approx(expected)


def test_recommend_for_experiment_uses_assigned_arm(facade):
    arm = facade.router.assign("rec-v2", "u1")
    expected = facade.get_recommendations_with_experiment("u1", arm)
    assert facade.recommend_for_experiment("rec-v2", "u1") == expected


def test_profile_update_through_facade(facade):
    facade.update_user_profile(
        "u2", UserInteraction(user_id="u2", item_id="i1", purchased=True)
    )
    assert "i1" not in {r.item_id for r in facade.get_recommendations("u2")}


def test_facades_do_not_share_learned_state(pricing_catalog, pricing_market):
    constraints = {"p1": PricingConstraints(min_price=80.0, max_price=150.0)}
    first = MarketplaceIntelligence(pricing_catalog, pricing_market, constraints, clock=fixed_clock)
    second = MarketplaceIntelligence(pricing_catalog, pricing_market, constraints, clock=fixed_clock)
    try:
        first.optimize_price("p1")
        assert len(first.pricing.q_table) == 1
        assert len(second.pricing.q_table) == 0
        assert second.pricing.average_reward() == 0.0
    finally:
        first.shutdown()
        second.shutdown()


def test_metrics_cover_both_engines(facade):
    facade.optimize_price("p1")
    facade.get_recommendations("u1")
    operations = facade.metrics.get_metrics()["operations"]
    assert operations["optimize_price"]["count"] == 1
    assert operations["get_recommendations"]["count"] == 1

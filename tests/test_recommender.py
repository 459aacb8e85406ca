"""Tests for the hybrid recommendation engine.

Uses the ten-item catalog and five-user interaction history from conftest,
with a two-component factor model trained before each test.
"""

from collections import Counter

import pytest

from marketintel.config import HybridWeights, RecommenderConfig
from marketintel.exceptions import ConfigurationError, WeightSumError
from marketintel.models import DataSparsityCondition, UserInteraction
from marketintel.recommender.engine import HybridRecommender
from marketintel.recommender.interactions import InMemoryInteractionStore
from marketintel.recommender.scoring import REASON_POPULAR, popularity_score

from conftest import NOW, fixed_clock


def max_category_count(results, catalog):
    counts = Counter(catalog.get_item_features(r.item_id).category for r in results)
    return max(counts.values())


# ===== Core ranking =====


def test_history_is_excluded(recommender, interaction_store):
    for user_id in ("u1", "u2", "u3", "u4", "u5"):
        history = set(interaction_store.get_user_history(user_id))
        results = recommender.get_recommendations(user_id, count=10)
        assert results
        assert history.isdisjoint(r.item_id for r in results)


def test_results_sorted_and_bounded(recommender):
    results = recommender.get_recommendations("u1", count=4)
    assert len(results) == 4
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert all(0.0 <= r.confidence <= 1.0 for r in results)
    assert len({r.item_id for r in results}) == 4


def test_more_diversity_never_concentrates_categories(recommender, rec_catalog):
    """Raising the diversity weight never increases the top category's share."""
    plain = recommender.get_recommendations("u1", count=4, diversity_weight=0.0)
    diverse = recommender.get_recommendations("u1", count=4, diversity_weight=10.0)

    assert max_category_count(diverse, rec_catalog) <= max_category_count(plain, rec_catalog)
    assert max_category_count(diverse, rec_catalog) == 1


def test_invalid_arguments(recommender):
    with pytest.raises(ValueError):
        recommender.get_recommendations("u1", count=0)
    with pytest.raises(ValueError):
        recommender.get_recommendations("u1", diversity_weight=-0.1)


def test_return_scores_breakdown(recommender):
    results, breakdown = recommender.get_recommendations("u3", count=3, return_scores=True)

    assert breakdown["sparsity"] is None
    assert breakdown["weights"] == HybridWeights().model_dump()
    assert list(breakdown["items"]) == [r.item_id for r in results]
    for r in results:
        item_scores = breakdown["items"][r.item_id]
        assert item_scores["final"] == r.score
        assert set(item_scores) == {
            "collaborative", "content", "popularity", "business", "hybrid", "final",
        }


# ===== Profile updates =====


def test_update_profile_is_visible_without_retrain(recommender):
    """An interaction recorded now is excluded from the very next call."""
    before = [r.item_id for r in recommender.get_recommendations("u1", count=10)]
    assert "i8" in before

    recommender.update_user_profile(
        "u1",
        UserInteraction(user_id="u1", item_id="i8", purchased=True, timestamp=NOW),
    )

    after = [r.item_id for r in recommender.get_recommendations("u1", count=10)]
    assert "i8" not in after


def test_update_profile_moves_user_vector(recommender):
    before = recommender.factors.user_vector("u4").copy()
    recommender.update_user_profile(
        "u4", UserInteraction(user_id="u4", item_id="i1", purchased=True)
    )
    assert (recommender.factors.user_vector("u4") != before).any()


def test_update_profile_user_mismatch(recommender):
    with pytest.raises(ValueError):
        recommender.update_user_profile(
            "u1", UserInteraction(user_id="u2", item_id="i3", viewed=True)
        )


# ===== Sparse data =====


def test_cold_start_is_popularity_ranked(recommender, rec_catalog):
    """A brand-new user gets popular items with low confidence."""
    results, breakdown = recommender.get_recommendations(
        "newcomer", count=10, return_scores=True
    )

    assert breakdown["sparsity"] == DataSparsityCondition.COLD_START_USER.value
    assert len(results) == 10
    assert all(r.reason == REASON_POPULAR for r in results)
    assert all(r.confidence < 0.5 for r in results)

    expected = sorted(
        rec_catalog.list_item_ids(),
        key=lambda i: popularity_score(
            rec_catalog.get_item_features(i), NOW, recommender.config
        ),
        reverse=True,
    )
    assert [r.item_id for r in results] == expected
    counters = recommender.metrics.get_metrics()["counters"]
    assert counters["cold_start_user"] == 1


def test_no_personal_signal(rec_catalog, gateway):
    """History without factors or embeddings degrades to popularity."""
    store = InMemoryInteractionStore()
    store.append_interaction(UserInteraction(user_id="u1", item_id="i1", purchased=True))
    engine = HybridRecommender(rec_catalog, store, gateway=gateway, clock=fixed_clock)

    results, breakdown = engine.get_recommendations("u1", return_scores=True)

    assert breakdown["sparsity"] == DataSparsityCondition.NO_PERSONAL_SIGNAL.value
    assert "i1" not in {r.item_id for r in results}
    assert all(r.reason == REASON_POPULAR for r in results)
    assert all(r.confidence < 0.5 for r in results)


def test_everything_seen_returns_empty(rec_catalog, gateway):
    store = InMemoryInteractionStore()
    for item_id in rec_catalog.list_item_ids():
        store.append_interaction(UserInteraction(user_id="u1", item_id=item_id, viewed=True))
    engine = HybridRecommender(rec_catalog, store, gateway=gateway, clock=fixed_clock)
    assert engine.get_recommendations("u1") == []


# ===== Experiments and configuration =====


def test_treatment_arm(recommender, interaction_store):
    history = set(interaction_store.get_user_history("u2"))
    control = recommender.get_recommendations_with_experiment("u2", "control", count=5)
    treatment = recommender.get_recommendations_with_experiment("u2", "treatment", count=5)

    assert len(control) == len(treatment) == 5
    assert history.isdisjoint(r.item_id for r in treatment)
    with pytest.raises(ValueError):
        recommender.get_recommendations_with_experiment("u2", "aggressive")


def test_weights_must_sum_to_one():
    with pytest.raises(WeightSumError):
        HybridWeights(collaborative=0.5, content=0.5, popularity=0.2, business=0.1)
    with pytest.raises(ConfigurationError):
        RecommenderConfig(treatment_weights=HybridWeights(collaborative=0.9))


def test_custom_weights_change_ranking(rec_catalog, interaction_store, rec_embeddings, gateway):
    """Popularity-only weights rank candidates by popularity."""
    config = RecommenderConfig(
        weights=HybridWeights(collaborative=0.0, content=0.0, popularity=1.0, business=0.0),
        default_diversity_weight=0.0,
    )
    engine = HybridRecommender(
        rec_catalog, interaction_store, rec_embeddings,
        config=config, gateway=gateway, clock=fixed_clock,
    )
    results = engine.get_recommendations("u4", count=3)
    pops = [
        popularity_score(rec_catalog.get_item_features(r.item_id), NOW, config)
        for r in results
    ]
    assert pops == sorted(pops, reverse=True)
    assert [r.score for r in results] == pytest.approx(pops)

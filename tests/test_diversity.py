"""Tests for category diversity re-ranking and scoring helpers."""

from datetime import timedelta

import pytest

from marketintel.config import RecommenderConfig
from marketintel.models import ItemFeatures, RecommendationResult
from marketintel.recommender.diversity import diversity_rerank
from marketintel.recommender.scoring import (
    REASON_COLLABORATIVE,
    REASON_CONTENT,
    REASON_POPULAR,
    business_score,
    confidence_score,
    generate_reason,
    normalize_scores,
    popularity_score,
)

from conftest import NOW


def result(item_id, score):
    return RecommendationResult(item_id=item_id, score=score, reason="", confidence=0.5)


@pytest.fixture
def ranked():
    return [result("a1", 0.90), result("a2", 0.88), result("a3", 0.86), result("b1", 0.80)]


@pytest.fixture
def categories():
    return {"a1": "a", "a2": "a", "a3": "a", "b1": "b"}


def test_zero_weight_keeps_order(ranked, categories):
    reranked = diversity_rerank(ranked, categories, 0.0)
    assert [r.item_id for r in reranked] == ["a1", "a2", "a3", "b1"]
    assert [r.score for r in reranked] == [0.90, 0.88, 0.86, 0.80]


def test_penalty_grows_with_repeats(ranked, categories):
    """The n-th repeat of a category loses 0.1 * weight * n."""
    reranked = diversity_rerank(ranked, categories, 1.0)
    scores = {r.item_id: r.score for r in reranked}

    assert scores["a1"] == pytest.approx(0.90)
    assert scores["a2"] == pytest.approx(0.78)
    assert scores["a3"] == pytest.approx(0.66)
    assert [r.item_id for r in reranked] == ["a1", "b1", "a2", "a3"]


def test_rerank_does_not_mutate_input(ranked, categories):
    diversity_rerank(ranked, categories, 1.0)
    assert ranked[1].score == 0.88


def test_ties_keep_original_order():
    ranked = [result("x", 0.5), result("y", 0.5)]
    reranked = diversity_rerank(ranked, {"x": "a", "y": "b"}, 1.0)
    assert [r.item_id for r in reranked] == ["x", "y"]


# ===== Scoring helpers =====


def test_normalize_scores():
    assert normalize_scores({}) == {}
    assert normalize_scores({"a": 2.0, "b": 2.0}) == {"a": 0.5, "b": 0.5}
    assert normalize_scores({"a": 1.0, "b": 3.0, "c": 2.0}) == {"a": 0.0, "b": 1.0, "c": 0.5}


def test_popularity_recency_half_life():
    config = RecommenderConfig()
    fresh = ItemFeatures(item_id="f", category="c", price=1.0, created_at=NOW)
    aged = fresh.model_copy(update={"created_at": NOW - timedelta(days=30)})

    assert popularity_score(fresh, NOW, config) == pytest.approx(1 / 3)
    assert popularity_score(aged, NOW, config) == pytest.approx(0.5 / 3)


def test_business_score_monotonic():
    config = RecommenderConfig()
    cheap = ItemFeatures(item_id="c", category="x", price=100.0, performance=50.0)
    pricey = cheap.model_copy(update={"price": 500.0})
    better = cheap.model_copy(update={"performance": 90.0})

    assert business_score(pricey, config) > business_score(cheap, config)
    assert business_score(better, config) > business_score(cheap, config)
    assert business_score(cheap, config) == pytest.approx(0.5 * 0.1 + 0.5 * 0.5)


def test_confidence_score_caps():
    config = RecommenderConfig()
    assert confidence_score(0, 0, config) == 0.0
    assert confidence_score(5, 50, config) == pytest.approx(0.5)
    assert confidence_score(100, 1000, config) == 1.0


def test_generate_reason():
    assert generate_reason(0.9, 0.2, 0.3) == REASON_COLLABORATIVE
    assert generate_reason(0.1, 0.8, 0.3) == REASON_CONTENT
    assert generate_reason(0.1, 0.2, 0.3) == REASON_POPULAR

"""Tests for the factor model and its online user-vector updates."""

import numpy as np
import pytest

from marketintel.recommender.factorization import (
    FactorModel,
    FactorStore,
    load_factor_model,
    save_factor_model,
    train_factor_model,
)


@pytest.fixture
def snapshot():
    """Two taste clusters over six items."""
    return {
        "u1": {"a": 5.0, "b": 4.0},
        "u2": {"a": 4.0, "b": 5.0, "c": 1.0},
        "u3": {"d": 5.0, "e": 4.0},
        "u4": {"d": 4.0, "e": 5.0, "f": 3.0},
        "u5": {"a": 1.0, "f": 5.0},
    }


def test_train_shapes(snapshot):
    model = train_factor_model(snapshot, n_components=3)

    assert model.n_components == 3
    assert set(model.user_factors) == {"u1", "u2", "u3", "u4", "u5"}
    assert set(model.item_factors) == {"a", "b", "c", "d", "e", "f"}
    assert model.user_factors["u1"].shape == (3,)
    assert model.item_factors["a"].shape == (3,)


def test_train_reduces_components(snapshot):
    """More components than the matrix allows are reduced automatically."""
    model = train_factor_model(snapshot, n_components=50)
    assert model.n_components == 4


def test_scores_follow_taste_clusters(snapshot):
    model = train_factor_model(snapshot, n_components=2)
    u1 = model.user_factors["u1"]
    assert model.score(u1, "b") > model.score(u1, "e")
    assert model.score(u1, "unknown") is None


def test_train_rejects_empty_matrix():
    with pytest.raises(ValueError):
        train_factor_model({})
    with pytest.raises(ValueError):
        train_factor_model({"u1": {"a": 1.0}})


def test_nudge_moves_toward_target(snapshot):
    """One gradient step reduces the prediction error on the item."""
    store = FactorStore(train_factor_model(snapshot, n_components=2))
    model = store.model
    before = model.score(store.user_vector("u3"), "a")

    updated = store.nudge_user("u3", "a", strength=5.0, learning_rate=0.1)

    after = model.score(updated, "a")
    assert abs(5.0 - after) < abs(5.0 - before)
    np.testing.assert_array_equal(store.user_vector("u3"), updated)
    # The published snapshot itself is never mutated
    assert model.score(model.user_factors["u3"], "a") == pytest.approx(before)


def test_nudge_new_user_starts_from_zero(snapshot):
    store = FactorStore(train_factor_model(snapshot, n_components=2))
    item_vector = store.model.item_factors["d"]

    updated = store.nudge_user("newcomer", "d", strength=5.0, learning_rate=0.1)

    np.testing.assert_allclose(updated, 0.5 * item_vector)
    assert store.nudge_user("newcomer", "unknown-item", 5.0, 0.1) is None


def test_publish_discards_online_updates(snapshot):
    store = FactorStore(train_factor_model(snapshot, n_components=2))
    store.nudge_user("u1", "d", 5.0, 0.1)

    fresh = train_factor_model(snapshot, n_components=3)
    store.publish(fresh)

    model, vector = store.user_snapshot("u1")
    assert model is fresh
    np.testing.assert_array_equal(vector, fresh.user_factors["u1"])


def test_empty_store():
    store = FactorStore()
    assert store.user_vector("u1") is None
    assert store.nudge_user("u1", "a", 5.0, 0.1) is None
    assert FactorModel.empty().n_components == 0


def test_save_and_load(snapshot, tmp_path):
    model = train_factor_model(snapshot, n_components=2)
    path = save_factor_model(model, str(tmp_path))
    assert path.exists()

    loaded = load_factor_model(str(tmp_path))
    assert loaded.n_components == model.n_components
    np.testing.assert_allclose(loaded.item_factors["a"], model.item_factors["a"])

    with pytest.raises(FileNotFoundError):
        load_factor_model(str(tmp_path / "missing"))

"""Collaborative filtering factor model.

The factorization is trained offline with Truncated SVD over the sparse
interaction matrix and published as an immutable ``FactorModel`` snapshot.
Online calls only read the latest published snapshot; the one online write
is ``FactorStore.nudge_user``, a single gradient step on one user's vector
after a new interaction, so fresh activity shows up without a retrain.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Tuple

import joblib
import numpy as np
from sklearn.decomposition import TruncatedSVD

from marketintel.locking import KeyedLock
from marketintel.models import utc_now
from marketintel.recommender.interactions import snapshot_to_matrix

# Configure module logger
logger = logging.getLogger(__name__)

# Model configuration constants
DEFAULT_N_COMPONENTS = 50
DEFAULT_N_ITERATIONS = 10
DEFAULT_RANDOM_STATE = 42
FACTORS_FILENAME = "factor_model.joblib"


class FactorModel:
    """Latent user and item vectors from one training run."""

    def __init__(
        self,
        user_factors: Dict[str, np.ndarray],
        item_factors: Dict[str, np.ndarray],
        n_components: int,
        trained_at: Optional[datetime] = None,
    ):
        self.user_factors = user_factors
        self.item_factors = item_factors
        self.n_components = n_components
        self.trained_at = trained_at or utc_now()

    def score(self, user_vector: np.ndarray, item_id: str) -> Optional[float]:
        """Predicted interaction strength, or None for items outside the model."""
        item_vector = self.item_factors.get(item_id)
        if item_vector is None:
            return None
        return float(np.dot(user_vector, item_vector))

    @classmethod
    def empty(cls) -> "FactorModel":
        return cls({}, {}, n_components=0)


def train_factor_model(
    matrix_snapshot: Dict[str, Dict[str, float]],
    n_components: int = DEFAULT_N_COMPONENTS,
    n_iter: int = DEFAULT_N_ITERATIONS,
    random_state: int = DEFAULT_RANDOM_STATE,
) -> FactorModel:
    """Train a Truncated SVD model for collaborative filtering.

    Uses matrix factorization to learn latent features from user-item
    interaction strengths. User vectors are the SVD-transformed matrix rows;
    item vectors are the corresponding columns of the SVD components, so
    their dot product reconstructs the interaction strength.

    Args:
        matrix_snapshot: Sparse user -> item -> strength mapping.
        n_components: Number of latent features to extract. Reduced
            automatically when larger than the matrix allows.
        n_iter: Number of iterations for randomized SVD solver.
        random_state: Random seed for reproducibility.

    Returns:
        Trained factor model.

    Raises:
        ValueError: If the matrix is empty or too small to factorize.
    """
    user_item_matrix, user_id_to_idx, item_id_to_idx = snapshot_to_matrix(
        matrix_snapshot
    )

    if user_item_matrix.nnz == 0:
        raise ValueError("Cannot train on empty interaction matrix")

    n_users, n_items = user_item_matrix.shape
    max_components = min(n_users, n_items) - 1
    if max_components < 1:
        raise ValueError(
            f"Interaction matrix {n_users}x{n_items} is too small to factorize"
        )
    if n_components > max_components:
        logger.warning(
            f"Requested n_components ({n_components}) is too large for "
            f"matrix size ({n_users}x{n_items}). "
            f"Adjusting to {max_components}."
        )
        n_components = max_components

    logger.info(f"Training SVD model with {n_components} components")
    logger.info(f"Random state: {random_state}, Iterations: {n_iter}")

    model = TruncatedSVD(
        n_components=n_components,
        n_iter=n_iter,
        random_state=random_state,
    )
    user_latent = model.fit_transform(user_item_matrix)

    logger.info("Model training completed")
    logger.info(f"Explained variance ratio: {model.explained_variance_ratio_.sum():.4f}")

    user_factors = {
        user_id: user_latent[idx].astype(float)
        for user_id, idx in user_id_to_idx.items()
    }
    item_factors = {
        item_id: model.components_[:, idx].astype(float)
        for item_id, idx in item_id_to_idx.items()
    }
    return FactorModel(user_factors, item_factors, n_components)


class FactorStore:
    """Holds the published factor snapshot and online user-vector updates.

    Lock discipline: ``publish`` swaps the whole snapshot under a short lock;
    ``nudge_user`` serializes per user and replaces that user's vector with
    a new array (copy-on-write), so readers holding an older vector are never
    affected by a concurrent write.
    """

    def __init__(self, model: Optional[FactorModel] = None):
        self._model = model or FactorModel.empty()
        self._overrides: Dict[str, np.ndarray] = {}
        self._lock = threading.Lock()
        self._user_locks = KeyedLock()

    def publish(self, model: FactorModel) -> None:
        """Make a freshly trained model the one online calls read.

        Online nudges made against the previous snapshot are discarded; the
        new model was trained on the interactions that produced them.
        """
        with self._lock:
            self._model = model
            self._overrides = {}
        logger.info(
            f"Published factor model: {len(model.user_factors)} users, "
            f"{len(model.item_factors)} items, {model.n_components} components"
        )

    @property
    def model(self) -> FactorModel:
        with self._lock:
            return self._model

    def user_snapshot(self, user_id: str) -> Tuple[FactorModel, Optional[np.ndarray]]:
        """The published model together with the user's current vector.

        Read under one lock, so the vector always matches the model's
        dimensionality.
        """
        with self._lock:
            vector = self._overrides.get(user_id)
            if vector is None:
                vector = self._model.user_factors.get(user_id)
            return self._model, vector

    def user_vector(self, user_id: str) -> Optional[np.ndarray]:
        return self.user_snapshot(user_id)[1]

    def nudge_user(
        self,
        user_id: str,
        item_id: str,
        strength: float,
        learning_rate: float,
    ) -> Optional[np.ndarray]:
        """Move a user's vector one gradient step toward ``strength`` on an item.

        Users unknown to the snapshot start from the zero vector. Items
        unknown to the snapshot carry no latent information and are skipped.

        Returns:
            The updated vector, or None when the item is not in the model.
        """
        with self._user_locks(user_id):
            model, current = self.user_snapshot(user_id)
            item_vector = model.item_factors.get(item_id)
            if item_vector is None:
                return None

            if current is None:
                current = np.zeros(model.n_components)

            error = strength - float(np.dot(current, item_vector))
            updated = current + learning_rate * error * item_vector

            with self._lock:
                # A publish may have raced us; only write against the same snapshot
                if self._model is model:
                    self._overrides[user_id] = updated
            return updated


def save_factor_model(model: FactorModel, output_dir: str) -> Path:
    """Save a factor model to disk with joblib.

    Returns:
        Path of the written file.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    model_file = output_path / FACTORS_FILENAME

    joblib.dump(
        {
            "user_factors": model.user_factors,
            "item_factors": model.item_factors,
            "n_components": model.n_components,
            "trained_at": model.trained_at,
        },
        model_file,
    )
    logger.info(f"Saved factor model to {model_file}")
    return model_file


def load_factor_model(model_dir: str) -> FactorModel:
    """Load a factor model saved by ``save_factor_model``.

    Raises:
        FileNotFoundError: If the model file does not exist.
    """
    model_file = Path(model_dir) / FACTORS_FILENAME
    if not model_file.exists():
        raise FileNotFoundError(f"Factor model file not found: {model_file}")

    data = joblib.load(model_file)
    model = FactorModel(
        user_factors=data["user_factors"],
        item_factors=data["item_factors"],
        n_components=data["n_components"],
        trained_at=data["trained_at"],
    )
    logger.info(
        f"Loaded factor model from {model_dir}: "
        f"{len(model.user_factors)} users, {len(model.item_factors)} items"
    )
    return model

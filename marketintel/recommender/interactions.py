"""User interaction store and sparse interaction matrix.

Interaction events are appended and never mutated. Each (user, item) pair
keeps a single interaction-strength scalar; a new event can only raise it,
so the matrix grows monotonically between offline rebuilds.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix

from marketintel.locking import KeyedLock
from marketintel.models import UserInteraction
from marketintel.providers import InteractionStore

# Configure module logger
logger = logging.getLogger(__name__)

PURCHASE_STRENGTH = 5.0
VIEW_STRENGTH = 1.0
ENGAGED_VIEW_BONUS = 2.0
DEFAULT_ENGAGED_VIEW_SECONDS = 60.0


def interaction_strength(
    event: UserInteraction,
    engaged_view_seconds: float = DEFAULT_ENGAGED_VIEW_SECONDS,
) -> float:
    """Strength of a single interaction event.

    purchased (+5) + explicit rating (if any) + viewed (+1)
    + engaged-view bonus (+2) when dwell time exceeds the threshold.
    """
    strength = 0.0
    if event.purchased:
        strength += PURCHASE_STRENGTH
    if event.rating is not None:
        strength += event.rating
    if event.viewed:
        strength += VIEW_STRENGTH
    if event.time_spent > engaged_view_seconds:
        strength += ENGAGED_VIEW_BONUS
    return strength


class InMemoryInteractionStore(InteractionStore):
    """Interaction store held in process memory.

    Lock discipline: writes for one user are serialized by a per-user lock;
    a short internal lock guards the shared dictionaries, so readers always
    get a consistent copy while another user's write is in flight.
    """

    def __init__(self, engaged_view_seconds: float = DEFAULT_ENGAGED_VIEW_SECONDS):
        self.engaged_view_seconds = engaged_view_seconds
        self._events: List[UserInteraction] = []
        self._matrix: Dict[str, Dict[str, float]] = {}
        self._history: Dict[str, List[str]] = {}
        self._data_lock = threading.Lock()
        self._user_locks = KeyedLock()

    def append_interaction(self, event: UserInteraction) -> float:
        strength = interaction_strength(event, self.engaged_view_seconds)
        with self._user_locks(event.user_id):
            with self._data_lock:
                self._events.append(event)
                row = self._matrix.setdefault(event.user_id, {})
                if event.item_id not in row:
                    self._history.setdefault(event.user_id, []).append(event.item_id)
                row[event.item_id] = max(row.get(event.item_id, 0.0), strength)
                updated = row[event.item_id]

        logger.debug(
            "Recorded interaction",
            extra={
                "user_id": event.user_id,
                "item_id": event.item_id,
                "strength": updated,
            },
        )
        return updated

    def get_user_history(self, user_id: str) -> List[str]:
        with self._data_lock:
            return list(self._history.get(user_id, []))

    def get_strength(self, user_id: str, item_id: str) -> float:
        with self._data_lock:
            return self._matrix.get(user_id, {}).get(item_id, 0.0)

    def get_matrix_snapshot(self) -> Dict[str, Dict[str, float]]:
        with self._data_lock:
            return {user: dict(row) for user, row in self._matrix.items()}

    def get_events(self, user_id: Optional[str] = None) -> List[UserInteraction]:
        """Appended events, optionally for one user, in arrival order."""
        with self._data_lock:
            if user_id is None:
                return list(self._events)
            return [e for e in self._events if e.user_id == user_id]

    def __len__(self) -> int:
        with self._data_lock:
            return len(self._events)


def interactions_from_frame(df: pd.DataFrame) -> List[UserInteraction]:
    """Convert a DataFrame of interaction events to ``UserInteraction`` records.

    Required columns: ``user_id``, ``item_id``. Optional columns: ``rating``,
    ``purchased``, ``viewed``, ``time_spent``, ``timestamp``.

    Raises:
        ValueError: If required columns are missing.
    """
    required_columns = {"user_id", "item_id"}
    if not required_columns.issubset(df.columns):
        missing = required_columns - set(df.columns)
        raise ValueError(f"Interaction frame missing required columns: {missing}")

    events = []
    for record in df.to_dict(orient="records"):
        fields = {
            key: value
            for key, value in record.items()
            if key in UserInteraction.model_fields and not _is_missing(value)
        }
        fields["user_id"] = str(fields["user_id"])
        fields["item_id"] = str(fields["item_id"])
        events.append(UserInteraction(**fields))

    logger.info(f"Loaded {len(events)} interaction records")
    return events


def _is_missing(value: object) -> bool:
    return value is None or (isinstance(value, float) and np.isnan(value))


def snapshot_to_matrix(
    snapshot: Dict[str, Dict[str, float]],
) -> Tuple[csr_matrix, Dict[str, int], Dict[str, int]]:
    """Build a sparse user-item matrix from a matrix snapshot.

    Returns:
        A tuple containing:
            - Sparse CSR matrix of shape (n_users, n_items)
            - Dictionary mapping user_id to matrix row index
            - Dictionary mapping item_id to matrix column index
    """
    unique_users = sorted(snapshot)
    unique_items = sorted({item for row in snapshot.values() for item in row})

    user_id_to_idx = {user_id: idx for idx, user_id in enumerate(unique_users)}
    item_id_to_idx = {item_id: idx for idx, item_id in enumerate(unique_items)}

    rows, cols, data = [], [], []
    for user_id, row in snapshot.items():
        for item_id, strength in row.items():
            rows.append(user_id_to_idx[user_id])
            cols.append(item_id_to_idx[item_id])
            data.append(strength)

    user_item_matrix = csr_matrix(
        (np.asarray(data, dtype=np.float32), (rows, cols)),
        shape=(len(unique_users), len(unique_items)),
        dtype=np.float32,
    )
    user_item_matrix.eliminate_zeros()

    n_cells = max(len(unique_users) * len(unique_items), 1)
    logger.info(f"Matrix shape: {user_item_matrix.shape}")
    logger.info(f"Matrix density: {user_item_matrix.nnz / n_cells:.4%}")

    return user_item_matrix, user_id_to_idx, item_id_to_idx

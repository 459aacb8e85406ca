"""Q-table store for the pricing agent.

Lock discipline:
    * ``locked(state_key)`` serializes read-modify-write cycles on one state
      row. Callers hold it while they select an action and write the update,
      so two concurrent updates to the same row never lose a write.
    * A short internal lock guards the row dictionary itself. Reads
      (``row``, ``best_value``, ``snapshot``) return copies taken under that
      lock and never wait on a row lock, so readers see a consistent row while
      another state key is being written.
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

import joblib

from marketintel.locking import KeyedLock
from marketintel.pricing.actions import PriceAction

# Configure module logger
logger = logging.getLogger(__name__)

QTABLE_FILENAME = "pricing_qtable.joblib"


class QTableStore:
    """Mapping of encoded state key -> action -> learned value.

    Created empty; entries appear as the agent learns and are only removed by
    ``reset()``. Each engine gets its own store unless one is injected.
    """

    def __init__(self) -> None:
        self._rows: Dict[str, Dict[PriceAction, float]] = {}
        self._rows_lock = threading.Lock()
        self._row_locks = KeyedLock()

    @contextmanager
    def locked(self, state_key: str) -> Iterator[None]:
        """Hold the writer lock for one state row."""
        with self._row_locks(state_key):
            yield

    def row(self, state_key: str) -> Dict[PriceAction, float]:
        """Copy of the learned values for a state (empty if unseen)."""
        with self._rows_lock:
            return dict(self._rows.get(state_key, {}))

    def value(self, state_key: str, action: PriceAction) -> float:
        """Learned value of (state, action); 0.0 when never updated."""
        with self._rows_lock:
            return self._rows.get(state_key, {}).get(action, 0.0)

    def best_value(self, state_key: str) -> Optional[float]:
        """Highest learned value for a state, or None if the state is unseen."""
        with self._rows_lock:
            row = self._rows.get(state_key)
            if not row:
                return None
            return max(row.values())

    def set_value(self, state_key: str, action: PriceAction, value: float) -> None:
        """Write one value. Callers must hold ``locked(state_key)``."""
        with self._rows_lock:
            self._rows.setdefault(state_key, {})[action] = float(value)

    def snapshot(self) -> Dict[str, Dict[PriceAction, float]]:
        """Deep copy of the whole table."""
        with self._rows_lock:
            return {key: dict(row) for key, row in self._rows.items()}

    def reset(self) -> None:
        """Forget everything learned."""
        with self._rows_lock:
            self._rows.clear()
        logger.info("Q-table reset")

    def __len__(self) -> int:
        with self._rows_lock:
            return len(self._rows)

    def __contains__(self, state_key: object) -> bool:
        with self._rows_lock:
            return state_key in self._rows

    def save(self, output_dir: str, filename: str = QTABLE_FILENAME) -> Path:
        """Save the table to ``output_dir`` with joblib.

        Actions are stored by name so the file survives reordering of the
        action enum.

        Returns:
            Path of the written file.
        """
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)
        table_file = output_path / filename

        serializable = {
            key: {action.name: value for action, value in row.items()}
            for key, row in self.snapshot().items()
        }
        joblib.dump(serializable, table_file)
        logger.info(f"Saved Q-table with {len(serializable)} states to {table_file}")
        return table_file

    def load(self, model_dir: str, filename: str = QTABLE_FILENAME) -> None:
        """Replace the table with one saved by ``save``.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        table_file = Path(model_dir) / filename
        if not table_file.exists():
            raise FileNotFoundError(f"Q-table file not found: {table_file}")

        data = joblib.load(table_file)
        rows = {
            key: {PriceAction[name]: float(value) for name, value in row.items()}
            for key, row in data.items()
        }
        with self._rows_lock:
            self._rows = rows
        logger.info(f"Loaded Q-table with {len(rows)} states from {table_file}")

"""Command-line interface for the offline factor-model job.

Reads interaction events from CSV, rebuilds the interaction matrix, trains
the collaborative filtering factors and saves them for the recommendation
engine to load and publish.

Example:
    Train with default settings:
        $ python scripts/train_factors.py data/interactions.csv

    Train with custom parameters:
        $ python scripts/train_factors.py data/interactions.csv \\
            --output-dir models/production \\
            --n-components 30
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from marketintel.logging_config import setup_logging
from marketintel.recommender.factorization import (
    DEFAULT_N_COMPONENTS,
    DEFAULT_N_ITERATIONS,
    DEFAULT_RANDOM_STATE,
    FactorModel,
    save_factor_model,
    train_factor_model,
)
from marketintel.recommender.interactions import (
    DEFAULT_ENGAGED_VIEW_SECONDS,
    InMemoryInteractionStore,
    interactions_from_frame,
)

logger = logging.getLogger(__name__)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Train collaborative filtering factors from interaction events.",
    )
    parser.add_argument(
        "csv_path",
        type=str,
        help="CSV of interaction events with columns user_id, item_id and "
        "optionally rating, purchased, viewed, time_spent, timestamp",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="models",
        help="Directory where the factor model is saved (default: models)",
    )
    parser.add_argument(
        "--n-components",
        type=int,
        default=DEFAULT_N_COMPONENTS,
        help=f"Number of latent features (default: {DEFAULT_N_COMPONENTS})",
    )
    parser.add_argument(
        "--n-iter",
        type=int,
        default=DEFAULT_N_ITERATIONS,
        help=f"Iterations for the SVD solver (default: {DEFAULT_N_ITERATIONS})",
    )
    parser.add_argument(
        "--random-state",
        type=int,
        default=DEFAULT_RANDOM_STATE,
        help=f"Random seed (default: {DEFAULT_RANDOM_STATE})",
    )
    parser.add_argument(
        "--engaged-view-seconds",
        type=float,
        default=DEFAULT_ENGAGED_VIEW_SECONDS,
        help="Dwell time above which a view earns the engagement bonus",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    return parser.parse_args(argv)


def train_from_csv(
    csv_path: str,
    output_dir: str,
    n_components: int = DEFAULT_N_COMPONENTS,
    n_iter: int = DEFAULT_N_ITERATIONS,
    random_state: int = DEFAULT_RANDOM_STATE,
    engaged_view_seconds: float = DEFAULT_ENGAGED_VIEW_SECONDS,
) -> FactorModel:
    """Load events, train factors and save them to ``output_dir``.

    Raises:
        FileNotFoundError: If the CSV file does not exist.
        ValueError: If the events are malformed or too few to factorize.
    """
    path = Path(csv_path)
    if not path.is_file():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    store = InMemoryInteractionStore(engaged_view_seconds)
    for event in interactions_from_frame(pd.read_csv(path)):
        store.append_interaction(event)

    model = train_factor_model(
        store.get_matrix_snapshot(),
        n_components=n_components,
        n_iter=n_iter,
        random_state=random_state,
    )
    save_factor_model(model, output_dir)
    return model


def main(argv: Optional[List[str]] = None) -> int:
    """Run the training job.

    Returns:
        Exit code: 0 on success, 1 on error.
    """
    args = parse_arguments(argv)
    setup_logging("DEBUG" if args.verbose else "INFO")

    try:
        model = train_from_csv(
            args.csv_path,
            args.output_dir,
            n_components=args.n_components,
            n_iter=args.n_iter,
            random_state=args.random_state,
            engaged_view_seconds=args.engaged_view_seconds,
        )
    except FileNotFoundError as e:
        logger.error(f"File error: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        return 1

    logger.info(
        "Training completed",
        extra={
            "n_components": model.n_components,
            "n_users": len(model.user_factors),
            "n_items": len(model.item_factors),
            "output_dir": str(Path(args.output_dir).absolute()),
        },
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

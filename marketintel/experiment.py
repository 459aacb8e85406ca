"""Deterministic A/B assignment shared by the pricing and recommendation engines.

A subject (user id or product id) is assigned to an arm by hashing the
experiment id, the experiment epoch and the subject together. The same inputs
always produce the same arm; bumping the epoch is the only way to reshuffle.
"""

import hashlib
import logging
from typing import Dict, Iterable, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketintel.exceptions import ConfigurationError

# Configure module logger
logger = logging.getLogger(__name__)

CONTROL = "control"
TREATMENT = "treatment"
AGGRESSIVE = "aggressive"
CONSERVATIVE = "conservative"

DEFAULT_ARMS: Tuple[str, ...] = (CONTROL, TREATMENT)
PRICING_ARMS: Tuple[str, ...] = (CONTROL, AGGRESSIVE, CONSERVATIVE)


class Experiment(BaseModel):
    """An experiment definition.

    Attributes:
        experiment_id: Stable identifier of the experiment.
        arms: Arm names; the first arm is the control.
        epoch: Assignment seed. Changing it reshuffles every subject.
    """

    model_config = ConfigDict(frozen=True)

    experiment_id: str
    arms: Tuple[str, ...] = DEFAULT_ARMS
    epoch: int = Field(default=0, ge=0)

    @field_validator("arms")
    @classmethod
    def _check_arms(cls, arms: Tuple[str, ...]) -> Tuple[str, ...]:
        if len(arms) < 2 or len(set(arms)) != len(arms):
            raise ConfigurationError(
                "An experiment needs at least two distinct arms",
                details={"arms": list(arms)},
            )
        return arms


def assignment_bucket(experiment: Experiment, subject_id: str) -> int:
    """Stable integer bucket for a subject within an experiment epoch."""
    token = f"{experiment.experiment_id}:{experiment.epoch}:{subject_id}"
    digest = hashlib.sha256(token.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % len(experiment.arms)


class ExperimentRouter:
    """Assigns subjects to experiment arms.

    The router holds no per-subject state; assignment is a pure function of
    the experiment and the subject id, so any number of router instances
    agree with each other.
    """

    def __init__(self, experiments: Iterable[Experiment] = ()):
        self._experiments: Dict[str, Experiment] = {
            experiment.experiment_id: experiment for experiment in experiments
        }

    def register(self, experiment: Experiment) -> None:
        """Add or replace an experiment definition (e.g. to bump its epoch)."""
        self._experiments[experiment.experiment_id] = experiment
        logger.info(
            f"Registered experiment {experiment.experiment_id}",
            extra={"arms": list(experiment.arms), "epoch": experiment.epoch},
        )

    def get(self, experiment_id: str) -> Experiment:
        """Look up a registered experiment.

        Raises:
            ConfigurationError: If the experiment is not registered.
        """
        try:
            return self._experiments[experiment_id]
        except KeyError:
            raise ConfigurationError(
                f"Unknown experiment '{experiment_id}'",
                details={"experiment_id": experiment_id},
            ) from None

    def assign(self, experiment_id: str, subject_id: str) -> str:
        """Arm assigned to ``subject_id`` in the given experiment."""
        experiment = self.get(experiment_id)
        arm = experiment.arms[assignment_bucket(experiment, subject_id)]
        logger.debug(
            f"Assigned {subject_id} to {arm}",
            extra={"experiment_id": experiment_id, "epoch": experiment.epoch},
        )
        return arm

"""Experiment variant assignment.

A visitor is assigned to a variant of an experiment at most once: the
first lookup either finds the persisted assignment or draws a variant from
the traffic split, persists it and records an impression. Assignment is
keyed by the visitor's device-local state, not by identity.
"""

import logging
import math
import random
import uuid
from typing import Callable, List, Mapping, Optional

from storefront.experiments.dispatch import EventDispatcher
from storefront.experiments.models import (
    CONTROL_VARIANT,
    AssignmentResult,
    ExperimentDefinition,
)
from storefront.experiments.repository import ExperimentRepository, ImpressionSink
from storefront.personalization.storage import VisitorStorage

# Configure module logger
logger = logging.getLogger(__name__)

SESSION_ID_KEY = "ab_session_id"
ASSIGNMENT_KEY_PREFIX = "ab_test_"

RandomSource = Callable[[], float]


def draw_variant(
    traffic_split: Mapping[str, float],
    random_source: RandomSource = random.random,
) -> str:
    """Pick a variant name from a percentage traffic split.

    Draws a value in [0, 100) and returns the first variant, in mapping
    order, whose cumulative percentage reaches it. When no variant does
    (split sums below the draw, or is malformed) the first key is returned,
    or "control" for an empty split. Never raises.

    Args:
        traffic_split: Variant name to percentage.
        random_source: Returns a float in [0, 1).

    Returns:
        The chosen variant name.
    """
    names = list(traffic_split.keys()) if isinstance(traffic_split, Mapping) else []
    if not names:
        return CONTROL_VARIANT

    draw = random_source() * 100
    cumulative = 0.0
    for name in names:
        try:
            percentage = float(traffic_split[name])
        except (TypeError, ValueError, OverflowError):
            continue
        if not math.isfinite(percentage):
            continue
        cumulative += percentage
        if draw <= cumulative:
            return name

    return names[0]


class AssignmentStore:
    """Persisted session id and variant assignments for one visitor."""

    def __init__(self, storage: VisitorStorage) -> None:
        self.storage = storage

    @staticmethod
    def _key(experiment_id: str) -> str:
        return f"{ASSIGNMENT_KEY_PREFIX}{experiment_id}"

    def session_id(self) -> str:
        """Stable session id, generated on first use."""
        existing = self.storage.get(SESSION_ID_KEY)
        if existing:
            return existing
        return self.storage.set_if_absent(SESSION_ID_KEY, str(uuid.uuid4()))

    def get_variant(self, experiment_id: str) -> Optional[str]:
        stored = self.storage.get(self._key(experiment_id))
        if not isinstance(stored, str) or not stored:
            return None
        return stored

    def claim_variant(self, experiment_id: str, variant: str) -> str:
        """Persist variant unless one is already stored; return the stored one."""
        return self.storage.set_if_absent(self._key(experiment_id), variant)


class ExperimentAssignmentService:
    """Assigns visitors to experiment variants and records outcomes."""

    def __init__(
        self,
        repository: ExperimentRepository,
        sink: ImpressionSink,
        dispatcher: EventDispatcher,
        random_source: RandomSource = random.random,
    ) -> None:
        self.repository = repository
        self.sink = sink
        self.dispatcher = dispatcher
        self.random_source = random_source

    def _active_experiment(self, name: str) -> Optional[ExperimentDefinition]:
        try:
            experiment = self.repository.get_active_experiment(name)
        except Exception as e:
            logger.error(
                "Failed to fetch experiment",
                extra={"experiment_name": name, "error": str(e)},
            )
            return None
        if experiment is None or not experiment.is_active:
            return None
        return experiment

    def get_assignment(
        self,
        experiment_name: str,
        store: AssignmentStore,
        identity_id: Optional[str] = None,
    ) -> Optional[AssignmentResult]:
        """Return the visitor's variant, assigning one on first sight.

        Returns None when the experiment does not exist, is inactive or
        cannot be fetched.
        """
        experiment = self._active_experiment(experiment_name)
        if experiment is None:
            return None

        try:
            stored = store.get_variant(experiment.id)
            if stored is not None:
                return AssignmentResult(
                    experiment_id=experiment.id,
                    experiment_name=experiment.name,
                    variant=stored,
                    value=experiment.variant_value(stored),
                )

            drawn = draw_variant(experiment.traffic_split, self.random_source)
            persisted = store.claim_variant(experiment.id, drawn)
            session_id = store.session_id()
        except Exception as e:
            logger.error(
                "Assignment state unavailable",
                extra={"experiment_id": experiment.id, "error": str(e)},
            )
            return None

        if persisted == drawn:
            self.dispatcher.submit(
                self.sink.record_impression,
                experiment.id,
                persisted,
                session_id,
                identity_id,
                description=f"impression:{experiment.id}",
            )
            logger.info(
                "Assigned experiment variant",
                extra={
                    "experiment_id": experiment.id,
                    "variant": persisted,
                    "session_id": session_id,
                },
            )
        else:
            logger.debug(
                "Concurrent assignment already persisted",
                extra={"experiment_id": experiment.id, "variant": persisted},
            )

        return AssignmentResult(
            experiment_id=experiment.id,
            experiment_name=experiment.name,
            variant=persisted,
            value=experiment.variant_value(persisted),
        )

    def record_conversion(
        self,
        experiment_name: str,
        store: AssignmentStore,
        value: float = 0.0,
    ) -> bool:
        """Mark the visitor's assignment converted.

        A later call overwrites the earlier value. Returns False when the
        visitor has no assignment for an active experiment of that name.
        """
        experiment = self._active_experiment(experiment_name)
        if experiment is None:
            return False

        try:
            variant = store.get_variant(experiment.id)
            if variant is None:
                return False
            session_id = store.session_id()
        except Exception as e:
            logger.error(
                "Assignment state unavailable",
                extra={"experiment_id": experiment.id, "error": str(e)},
            )
            return False

        return self.dispatcher.submit(
            self.sink.update_conversion,
            experiment.id,
            session_id,
            variant,
            value,
            description=f"conversion:{experiment.id}",
        )

    def list_by_type(
        self, test_type: str, target_id: Optional[str] = None
    ) -> List[ExperimentDefinition]:
        try:
            return list(self.repository.list_active_experiments(test_type, target_id))
        except Exception as e:
            logger.error(
                "Failed to list experiments",
                extra={"test_type": test_type, "target_id": target_id, "error": str(e)},
            )
            return []

"""Experiment definitions and impression storage.

Defines the interfaces the assignment service reads definitions from and
writes impressions/conversions to, and an in-memory implementation that
also carries the operator back-office: creating, pausing and deleting
experiments, declaring winners and tallying outcomes per variant.
"""

import json
import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Protocol

import pandas as pd

from storefront.experiments.models import (
    DEFAULT_TEST_TYPE,
    Assignment,
    ExperimentDefinition,
    Variant,
    VariantStats,
)

# Configure module logger
logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ExperimentRepository(Protocol):
    def get_active_experiment(self, name: str) -> Optional[ExperimentDefinition]:
        ...

    def list_active_experiments(
        self, test_type: str, target_id: Optional[str] = None
    ) -> List[ExperimentDefinition]:
        ...


class ImpressionSink(Protocol):
    def record_impression(
        self,
        experiment_id: str,
        variant: str,
        session_id: str,
        identity_id: Optional[str] = None,
    ) -> None:
        ...

    def update_conversion(
        self, experiment_id: str, session_id: str, variant: str, value: float
    ) -> None:
        ...


class InMemoryExperimentRepository:
    """Thread-safe experiment store with impression tallying."""

    def __init__(self, experiments: Iterable[ExperimentDefinition] = ()) -> None:
        self._lock = threading.Lock()
        self._experiments: Dict[str, ExperimentDefinition] = {}
        self._impressions: List[Assignment] = []
        for experiment in experiments:
            self._experiments[experiment.id] = experiment

    # Definitions

    def get_experiment(self, experiment_id: str) -> Optional[ExperimentDefinition]:
        with self._lock:
            return self._experiments.get(experiment_id)

    def list_experiments(self) -> List[ExperimentDefinition]:
        with self._lock:
            return list(self._experiments.values())

    def get_active_experiment(self, name: str) -> Optional[ExperimentDefinition]:
        with self._lock:
            for experiment in self._experiments.values():
                if experiment.name == name and experiment.is_active:
                    return experiment
        return None

    def list_active_experiments(
        self, test_type: str, target_id: Optional[str] = None
    ) -> List[ExperimentDefinition]:
        with self._lock:
            return [
                experiment
                for experiment in self._experiments.values()
                if experiment.is_active
                and experiment.test_type == test_type
                and (target_id is None or experiment.target_id == target_id)
            ]

    def create_experiment(
        self,
        name: str,
        variants: List[Variant],
        traffic_split: Mapping[str, float],
        test_type: str = DEFAULT_TEST_TYPE,
        target_id: Optional[str] = None,
        description: str = "",
        is_active: bool = True,
    ) -> ExperimentDefinition:
        """Create and store a new experiment.

        Raises:
            ValueError: If the name is blank, no variant is declared, variant
                names repeat, or a split percentage is negative.
        """
        if not name or not name.strip():
            raise ValueError("Experiment name must not be empty")
        if not variants:
            raise ValueError("Experiment needs at least one variant")
        names = [variant.name for variant in variants]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate variant names: {names}")
        for variant_name, percentage in traffic_split.items():
            if percentage < 0:
                raise ValueError(
                    f"Traffic split for {variant_name!r} must not be negative"
                )

        experiment = ExperimentDefinition(
            id=str(uuid.uuid4()),
            name=name.strip(),
            variants=list(variants),
            traffic_split=dict(traffic_split),
            test_type=test_type,
            target_id=target_id,
            is_active=is_active,
            description=description,
            started_at=_now() if is_active else None,
        )
        with self._lock:
            self._experiments[experiment.id] = experiment

        logger.info(
            "Created experiment",
            extra={"experiment_id": experiment.id, "experiment_name": experiment.name},
        )
        return experiment

    def set_active(self, experiment_id: str, is_active: bool) -> ExperimentDefinition:
        """Start or pause an experiment; starting re-stamps ``started_at``."""
        with self._lock:
            if experiment_id not in self._experiments:
                raise KeyError(experiment_id)
            experiment = self._experiments[experiment_id]
            if is_active:
                updated = replace(experiment, is_active=True, started_at=_now())
            else:
                updated = replace(experiment, is_active=False)
            self._experiments[experiment_id] = updated
        logger.info(
            "Experiment started" if is_active else "Experiment paused",
            extra={"experiment_id": experiment_id},
        )
        return updated

    def declare_winner(self, experiment_id: str, variant: str) -> ExperimentDefinition:
        """Record the winning variant and stop the experiment."""
        with self._lock:
            if experiment_id not in self._experiments:
                raise KeyError(experiment_id)
            experiment = self._experiments[experiment_id]
            if variant not in {v.name for v in experiment.variants}:
                raise ValueError(f"Unknown variant {variant!r} for experiment {experiment_id}")
            updated = replace(experiment, winner_variant=variant, is_active=False)
            self._experiments[experiment_id] = updated
        logger.info(
            "Declared experiment winner",
            extra={"experiment_id": experiment_id, "variant": variant},
        )
        return updated

    def delete_experiment(self, experiment_id: str) -> None:
        with self._lock:
            if self._experiments.pop(experiment_id, None) is None:
                raise KeyError(experiment_id)
            self._impressions = [
                impression
                for impression in self._impressions
                if impression.experiment_id != experiment_id
            ]

    # Impressions

    def record_impression(
        self,
        experiment_id: str,
        variant: str,
        session_id: str,
        identity_id: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._impressions.append(
                Assignment(
                    experiment_id=experiment_id,
                    variant=variant,
                    session_id=session_id,
                    identity_id=identity_id,
                )
            )

    def update_conversion(
        self, experiment_id: str, session_id: str, variant: str, value: float
    ) -> None:
        """Mark matching impressions converted. Repeated calls overwrite the value."""
        updated = 0
        with self._lock:
            for impression in self._impressions:
                if (
                    impression.experiment_id == experiment_id
                    and impression.session_id == session_id
                    and impression.variant == variant
                ):
                    impression.converted = True
                    impression.conversion_value = value
                    updated += 1
        if updated == 0:
            logger.debug(
                "Conversion matched no impression",
                extra={"experiment_id": experiment_id, "variant": variant},
            )

    def impressions(self, experiment_id: str) -> List[Assignment]:
        with self._lock:
            return [
                replace(impression)
                for impression in self._impressions
                if impression.experiment_id == experiment_id
            ]

    def variant_stats(self, experiment_id: str) -> List[VariantStats]:
        """Tally impressions, conversions and conversion rate per variant.

        Declared variants without impressions are reported with zeros.
        """
        experiment = self.get_experiment(experiment_id)
        if experiment is None:
            raise KeyError(experiment_id)

        records = [
            {
                "variant": impression.variant,
                "converted": impression.converted,
                "conversion_value": impression.conversion_value or 0.0,
            }
            for impression in self.impressions(experiment_id)
        ]
        df = pd.DataFrame(records, columns=["variant", "converted", "conversion_value"])
        tally = df.groupby("variant").agg(
            impressions=("converted", "size"),
            conversions=("converted", "sum"),
            conversion_value=("conversion_value", "sum"),
        )

        declared = [variant.name for variant in experiment.variants]
        extra = [name for name in tally.index if name not in declared]
        tally = tally.reindex(declared + extra, fill_value=0)

        stats = []
        for variant_name, row in tally.iterrows():
            impressions = int(row["impressions"])
            conversions = int(row["conversions"])
            rate = (conversions / impressions) * 100 if impressions > 0 else 0.0
            stats.append(
                VariantStats(
                    variant=str(variant_name),
                    impressions=impressions,
                    conversions=conversions,
                    conversion_rate=round(rate, 2),
                    conversion_value=float(row["conversion_value"]),
                )
            )
        return stats


def load_experiments_json(path: str) -> InMemoryExperimentRepository:
    """Seed a repository from a JSON array of experiment definitions."""
    if not Path(path).exists():
        raise FileNotFoundError(f"Experiments file not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Experiments file must contain a JSON array: {path}")

    experiments = [ExperimentDefinition.from_dict(entry) for entry in data]
    logger.info(f"Loaded {len(experiments)} experiments from {path}")
    return InMemoryExperimentRepository(experiments)

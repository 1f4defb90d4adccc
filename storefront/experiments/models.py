"""Experiment data model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

CONTROL_VARIANT = "control"
TREATMENT_VARIANT = "variant"
DEFAULT_TEST_TYPE = "content"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class Variant:
    name: str
    value: str = ""


@dataclass
class ExperimentDefinition:
    """An A/B test with its variants and traffic split in percent.

    The split is not required to sum to 100; assignment stays total anyway.
    ``started_at`` is stamped each time the experiment is (re)activated and
    kept while it is paused.
    """

    id: str
    name: str
    variants: List[Variant] = field(default_factory=list)
    traffic_split: Dict[str, float] = field(default_factory=dict)
    test_type: str = DEFAULT_TEST_TYPE
    target_id: Optional[str] = None
    is_active: bool = True
    winner_variant: Optional[str] = None
    description: str = ""
    started_at: Optional[datetime] = None

    def variant_value(self, variant_name: str) -> Optional[str]:
        for variant in self.variants:
            if variant.name == variant_name:
                return variant.value
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "test_type": self.test_type,
            "target_id": self.target_id,
            "variants": [{"name": v.name, "value": v.value} for v in self.variants],
            "traffic_split": dict(self.traffic_split),
            "is_active": self.is_active,
            "winner_variant": self.winner_variant,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExperimentDefinition":
        """Build a definition from loosely shaped stored data.

        Non-list variants and non-mapping splits are read as empty, the same
        way stored experiments are read by the storefront.
        """
        raw_variants = data.get("variants")
        raw_split = data.get("traffic_split")
        variants = [
            Variant(name=str(v["name"]), value=str(v.get("value", "")))
            for v in (raw_variants if isinstance(raw_variants, list) else [])
            if isinstance(v, dict) and "name" in v
        ]
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            variants=variants,
            traffic_split=dict(raw_split) if isinstance(raw_split, dict) else {},
            test_type=str(data.get("test_type", DEFAULT_TEST_TYPE)),
            target_id=data.get("target_id"),
            is_active=bool(data.get("is_active", True)),
            winner_variant=data.get("winner_variant"),
            description=str(data.get("description", "")),
            started_at=_parse_timestamp(data.get("started_at")),
        )


@dataclass
class Assignment:
    """Impression record of a visitor seeing a variant, plus its conversion."""

    experiment_id: str
    variant: str
    session_id: str
    identity_id: Optional[str] = None
    converted: bool = False
    conversion_value: Optional[float] = None


@dataclass(frozen=True)
class AssignmentResult:
    """Variant handed to the presentation layer."""

    experiment_id: str
    experiment_name: str
    variant: str
    value: Optional[str] = None

    @property
    def is_control(self) -> bool:
        return self.variant == CONTROL_VARIANT

    @property
    def is_variant(self) -> bool:
        return self.variant == TREATMENT_VARIANT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "experiment_name": self.experiment_name,
            "variant": self.variant,
            "value": self.value,
            "is_control": self.is_control,
            "is_variant": self.is_variant,
        }


@dataclass(frozen=True)
class VariantStats:
    variant: str
    impressions: int
    conversions: int
    conversion_rate: float
    conversion_value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant": self.variant,
            "impressions": self.impressions,
            "conversions": self.conversions,
            "conversion_rate": self.conversion_rate,
            "conversion_value": self.conversion_value,
        }

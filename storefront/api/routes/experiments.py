"""A/B test endpoints for the Storefront API.

Visitor-facing endpoints hand out variant assignments and accept
conversions. The back-office router lets operators create, pause and
evaluate experiments and declare winners.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from storefront.api.dependencies import (
    Engine,
    Visitor,
    get_assignment_store,
    get_engine,
    get_visitor,
)
from storefront.api.exceptions import ExperimentNotFoundError, InvalidExperimentError
from storefront.experiments.assignment import AssignmentStore
from storefront.experiments.models import DEFAULT_TEST_TYPE, ExperimentDefinition, Variant

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/experiments",
    tags=["experiments"],
)

admin_router = APIRouter(
    prefix="/admin/experiments",
    tags=["experiments-admin"],
)


class VariantModel(BaseModel):
    name: str = Field(..., min_length=1)
    value: str = ""


class ExperimentModel(BaseModel):
    id: str
    name: str
    description: str = ""
    test_type: str
    target_id: Optional[str] = None
    variants: List[VariantModel]
    traffic_split: Dict[str, Any]
    is_active: bool
    winner_variant: Optional[str] = None
    started_at: Optional[datetime] = None

    @classmethod
    def from_definition(cls, experiment: ExperimentDefinition) -> "ExperimentModel":
        return cls(**experiment.to_dict())


class AssignmentResponse(BaseModel):
    """Variant for the visitor; all fields null when no experiment applies."""

    experiment_id: Optional[str] = None
    variant: Optional[str] = None
    value: Optional[str] = None
    is_control: bool = False
    is_variant: bool = False


class ConversionRequest(BaseModel):
    value: float = 0.0


class ConversionResponse(BaseModel):
    recorded: bool


class CreateExperimentRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    test_type: str = DEFAULT_TEST_TYPE
    target_id: Optional[str] = None
    variants: List[VariantModel] = Field(..., min_length=1)
    traffic_split: Dict[str, float]
    is_active: bool = True


class ActiveRequest(BaseModel):
    is_active: bool


class WinnerRequest(BaseModel):
    variant: str = Field(..., min_length=1)


class VariantStatsModel(BaseModel):
    variant: str
    impressions: int
    conversions: int
    conversion_rate: float
    conversion_value: float


class ExperimentResultsResponse(BaseModel):
    experiment: ExperimentModel
    variants: List[VariantStatsModel]


@router.get("", response_model=List[ExperimentModel])
def list_experiments(
    test_type: str = Query(DEFAULT_TEST_TYPE),
    target_id: Optional[str] = None,
    engine: Engine = Depends(get_engine),
) -> List[ExperimentModel]:
    """List active experiments for a placement type and optional target."""
    experiments = engine.experiments.list_by_type(test_type, target_id)
    return [ExperimentModel.from_definition(e) for e in experiments]


@router.get("/{experiment_name}/assignment", response_model=AssignmentResponse)
def get_assignment(
    experiment_name: str,
    visitor: Visitor = Depends(get_visitor),
    store: AssignmentStore = Depends(get_assignment_store),
    engine: Engine = Depends(get_engine),
) -> AssignmentResponse:
    """Get (or assign) the visitor's variant for an experiment.

    Example:
        GET /experiments/checkout_button/assignment
        Returns {"variant": "control", "value": "Buy now", ...}
    """
    result = engine.experiments.get_assignment(
        experiment_name, store, identity_id=visitor.identity_id
    )
    if result is None:
        return AssignmentResponse()
    return AssignmentResponse(
        experiment_id=result.experiment_id,
        variant=result.variant,
        value=result.value,
        is_control=result.is_control,
        is_variant=result.is_variant,
    )


@router.post("/{experiment_name}/conversion", response_model=ConversionResponse)
def record_conversion(
    experiment_name: str,
    request: Optional[ConversionRequest] = None,
    store: AssignmentStore = Depends(get_assignment_store),
    engine: Engine = Depends(get_engine),
) -> ConversionResponse:
    """Record that the visitor reached the experiment's goal."""
    value = request.value if request is not None else 0.0
    recorded = engine.experiments.record_conversion(experiment_name, store, value)
    return ConversionResponse(recorded=recorded)


def _existing(engine: Engine, experiment_id: str) -> ExperimentDefinition:
    experiment = engine.repository.get_experiment(experiment_id)
    if experiment is None:
        raise ExperimentNotFoundError(experiment_id)
    return experiment


@admin_router.get("", response_model=List[ExperimentModel])
def list_all_experiments(engine: Engine = Depends(get_engine)) -> List[ExperimentModel]:
    return [ExperimentModel.from_definition(e) for e in engine.repository.list_experiments()]


@admin_router.post("", response_model=ExperimentModel, status_code=status.HTTP_201_CREATED)
def create_experiment(
    request: CreateExperimentRequest,
    engine: Engine = Depends(get_engine),
) -> ExperimentModel:
    try:
        experiment = engine.repository.create_experiment(
            name=request.name,
            variants=[Variant(name=v.name, value=v.value) for v in request.variants],
            traffic_split=request.traffic_split,
            test_type=request.test_type,
            target_id=request.target_id,
            description=request.description,
            is_active=request.is_active,
        )
    except ValueError as e:
        raise InvalidExperimentError(str(e))
    return ExperimentModel.from_definition(experiment)


@admin_router.patch("/{experiment_id}/active", response_model=ExperimentModel)
def set_active(
    experiment_id: str,
    request: ActiveRequest,
    engine: Engine = Depends(get_engine),
) -> ExperimentModel:
    """Start or pause an experiment."""
    _existing(engine, experiment_id)
    experiment = engine.repository.set_active(experiment_id, request.is_active)
    return ExperimentModel.from_definition(experiment)


@admin_router.post("/{experiment_id}/winner", response_model=ExperimentModel)
def declare_winner(
    experiment_id: str,
    request: WinnerRequest,
    engine: Engine = Depends(get_engine),
) -> ExperimentModel:
    """Declare the winning variant; this also stops the experiment."""
    _existing(engine, experiment_id)
    try:
        experiment = engine.repository.declare_winner(experiment_id, request.variant)
    except ValueError as e:
        raise InvalidExperimentError(str(e), details={"variant": request.variant})
    return ExperimentModel.from_definition(experiment)


@admin_router.delete("/{experiment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_experiment(
    experiment_id: str,
    engine: Engine = Depends(get_engine),
) -> Response:
    _existing(engine, experiment_id)
    engine.repository.delete_experiment(experiment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@admin_router.get("/{experiment_id}/results", response_model=ExperimentResultsResponse)
def experiment_results(
    experiment_id: str,
    engine: Engine = Depends(get_engine),
) -> ExperimentResultsResponse:
    """Tally impressions and conversions per variant.

    Pending background events are delivered first so the tally is current.
    """
    experiment = _existing(engine, experiment_id)
    engine.dispatcher.flush(timeout=2.0)
    stats = engine.repository.variant_stats(experiment_id)
    return ExperimentResultsResponse(
        experiment=ExperimentModel.from_definition(experiment),
        variants=[VariantStatsModel(**s.to_dict()) for s in stats],
    )

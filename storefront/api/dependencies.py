"""Dependency wiring for the API.

Builds the engine (stores, services, dispatcher) from settings once per
process and resolves the calling visitor from request headers.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from storefront.config import Settings, get_settings
from storefront.experiments.assignment import AssignmentStore, ExperimentAssignmentService
from storefront.experiments.dispatch import EventDispatcher
from storefront.experiments.repository import (
    InMemoryExperimentRepository,
    load_experiments_json,
)
from storefront.personalization.catalog import (
    InMemoryCatalog,
    InMemoryPurchaseHistory,
    load_catalog_csv,
    load_purchase_history_csv,
)
from storefront.personalization.generator import ChatCompletionGenerator
from storefront.personalization.service import PersonalizationService
from storefront.personalization.signals import SignalStore
from storefront.personalization.storage import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
    VisitorStorage,
)

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass
class Engine:
    state: KeyValueStore
    personalization: PersonalizationService
    experiments: ExperimentAssignmentService
    repository: InMemoryExperimentRepository
    dispatcher: EventDispatcher


@dataclass(frozen=True)
class Visitor:
    visitor_id: str
    identity_id: Optional[str] = None


# Engine built on first request
_engine: Optional[Engine] = None
_engine_lock = threading.Lock()


def build_engine(settings: Settings) -> Engine:
    """Create all engine components from settings.

    Missing or unreadable data files leave the corresponding collaborator
    empty; the service still starts and serves neutral answers.
    """
    catalog = InMemoryCatalog()
    if settings.catalog_path is not None:
        try:
            catalog = load_catalog_csv(str(settings.catalog_path))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load catalog: {e}")

    purchase_history = InMemoryPurchaseHistory()
    if settings.orders_path is not None:
        try:
            purchase_history = load_purchase_history_csv(str(settings.orders_path), catalog)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load purchase history: {e}")

    repository = InMemoryExperimentRepository()
    if settings.experiments_path is not None:
        try:
            repository = load_experiments_json(str(settings.experiments_path))
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Failed to load experiments: {e}")

    if settings.state_dir is not None:
        state: KeyValueStore = FileKeyValueStore(str(settings.state_dir))
    else:
        state = InMemoryKeyValueStore()

    generator = None
    if settings.generator_enabled:
        generator = ChatCompletionGenerator(
            endpoint_url=settings.generator_url,
            api_key=settings.generator_api_key,
            model=settings.generator_model,
            timeout=settings.request_timeout_seconds,
        )

    dispatcher = EventDispatcher(max_queue_size=settings.event_queue_size)

    return Engine(
        state=state,
        personalization=PersonalizationService(
            catalog=catalog,
            purchase_history=purchase_history,
            generator=generator,
            catalog_limit=settings.catalog_limit,
        ),
        experiments=ExperimentAssignmentService(
            repository=repository,
            sink=repository,
            dispatcher=dispatcher,
        ),
        repository=repository,
        dispatcher=dispatcher,
    )


def get_engine() -> Engine:
    global _engine

    if _engine is None:
        with _engine_lock:
            if _engine is None:
                logger.info("Building engine")
                _engine = build_engine(get_settings())
    return _engine


def shutdown_engine() -> None:
    """Flush background events and drop the cached engine."""
    global _engine

    with _engine_lock:
        if _engine is not None:
            _engine.dispatcher.close()
            _engine = None


def get_visitor(
    x_visitor_id: str = Header(..., min_length=1, max_length=128),
    x_identity_id: Optional[str] = Header(default=None, max_length=128),
) -> Visitor:
    return Visitor(visitor_id=x_visitor_id, identity_id=x_identity_id or None)


def get_signal_store(
    visitor: Visitor = Depends(get_visitor),
    engine: Engine = Depends(get_engine),
) -> SignalStore:
    return SignalStore(VisitorStorage(engine.state, visitor.visitor_id))


def get_assignment_store(
    visitor: Visitor = Depends(get_visitor),
    engine: Engine = Depends(get_engine),
) -> AssignmentStore:
    return AssignmentStore(VisitorStorage(engine.state, visitor.visitor_id))

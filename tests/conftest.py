"""Shared fixtures for API tests.

Builds a small in-memory engine and points the application's engine
dependency at it, so no data files or environment settings are needed.
"""

import logging

import numpy as np
import pytest
from fastapi.testclient import TestClient

from storefront.api.dependencies import Engine, get_engine
from storefront.api.main import app
from storefront.api.metrics import metrics_service
from storefront.experiments.assignment import ExperimentAssignmentService
from storefront.experiments.dispatch import EventDispatcher
from storefront.experiments.models import ExperimentDefinition, Variant
from storefront.experiments.repository import InMemoryExperimentRepository
from storefront.personalization.catalog import (
    CatalogItem,
    InMemoryCatalog,
    InMemoryPurchaseHistory,
)
from storefront.personalization.scoring import RecommendationScorer
from storefront.personalization.service import PersonalizationService
from storefront.personalization.storage import InMemoryKeyValueStore

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)

VISITOR_HEADERS = {"X-Visitor-Id": "visitor-1"}


def build_test_engine(catalog=None, repository=None, purchase_history=None, generator=None, draw=0.1):
    if catalog is None:
        items = [
            CatalogItem(id=f"e{i}", category="elektronik", price=100.0 + i, name=f"Gadget {i}")
            for i in range(5)
        ]
        items += [
            CatalogItem(id=f"g{i}", category="garten", price=20.0 + i, tags=frozenset({"outdoor"}))
            for i in range(5)
        ]
        catalog = InMemoryCatalog(items)
    if repository is None:
        repository = InMemoryExperimentRepository([
            ExperimentDefinition(
                id="exp-1",
                name="checkout_button",
                variants=[Variant("control", "Buy now"), Variant("variant", "Complete purchase")],
                traffic_split={"control": 50, "variant": 50},
            )
        ])
    if purchase_history is None:
        purchase_history = InMemoryPurchaseHistory({"user-1": {"garten"}})

    dispatcher = EventDispatcher()
    return Engine(
        state=InMemoryKeyValueStore(),
        personalization=PersonalizationService(
            catalog=catalog,
            purchase_history=purchase_history,
            scorer=RecommendationScorer(np.random.default_rng(7)),
            generator=generator,
        ),
        experiments=ExperimentAssignmentService(
            repository, repository, dispatcher, random_source=lambda: draw
        ),
        repository=repository,
        dispatcher=dispatcher,
    )


@pytest.fixture
def engine():
    """Fixture providing an in-memory engine."""
    engine = build_test_engine()
    yield engine
    engine.dispatcher.close()


@pytest.fixture
def client(engine):
    """Fixture providing a test client bound to the in-memory engine."""
    metrics_service.reset()
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()

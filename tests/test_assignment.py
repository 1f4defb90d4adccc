"""Tests for experiment variant assignment.

Impressions and conversions are written by the background dispatcher, so
tests flush it before inspecting the repository.
"""

import numpy as np
import pytest

from storefront.experiments.assignment import (
    ASSIGNMENT_KEY_PREFIX,
    SESSION_ID_KEY,
    AssignmentStore,
    ExperimentAssignmentService,
    draw_variant,
)
from storefront.experiments.dispatch import EventDispatcher
from storefront.experiments.models import ExperimentDefinition, Variant
from storefront.experiments.repository import InMemoryExperimentRepository
from storefront.personalization.storage import InMemoryKeyValueStore, VisitorStorage


class FailingSink:
    def record_impression(self, *args):
        raise ConnectionError("impressions table unavailable")

    def update_conversion(self, *args):
        raise ConnectionError("impressions table unavailable")


class BrokenRepository:
    def get_active_experiment(self, name):
        raise ConnectionError("database down")

    def list_active_experiments(self, test_type, target_id=None):
        raise ConnectionError("database down")


class StaleReadStore(AssignmentStore):
    """Store whose reads miss a variant another tab already persisted."""

    def get_variant(self, experiment_id):
        return None


@pytest.fixture
def experiment():
    return ExperimentDefinition(
        id="exp-1",
        name="checkout_button",
        variants=[Variant("control", "Buy now"), Variant("variant", "Complete purchase")],
        traffic_split={"control": 50, "variant": 50},
    )


@pytest.fixture
def repository(experiment):
    return InMemoryExperimentRepository([experiment])


@pytest.fixture
def dispatcher():
    dispatcher = EventDispatcher()
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def backend():
    return InMemoryKeyValueStore()


@pytest.fixture
def store(backend):
    return AssignmentStore(VisitorStorage(backend, "visitor-1"))


def make_service(repository, dispatcher, draw=0.25, sink=None):
    return ExperimentAssignmentService(
        repository,
        sink if sink is not None else repository,
        dispatcher,
        random_source=lambda: draw,
    )


# ===== draw_variant =====


def test_draw_variant_follows_cumulative_split():
    split = {"control": 50, "variant": 50}

    assert draw_variant(split, lambda: 0.0) == "control"
    assert draw_variant(split, lambda: 0.49) == "control"
    assert draw_variant(split, lambda: 0.7) == "variant"


def test_draw_variant_is_total():
    """Test that every draw yields a declared variant."""
    split = {"a": 20, "b": 30, "c": 50}

    for draw in np.linspace(0.0, 0.9999, 101):
        assert draw_variant(split, lambda: float(draw)) in split


def test_draw_variant_under_full_split_falls_back_to_first_key():
    assert draw_variant({"control": 30, "variant": 30}, lambda: 0.9) == "control"


def test_draw_variant_empty_split():
    assert draw_variant({}, lambda: 0.5) == "control"


@pytest.mark.parametrize("split", [None, "50/50", ["control"]])
def test_draw_variant_non_mapping_split(split):
    assert draw_variant(split, lambda: 0.5) == "control"


def test_draw_variant_skips_malformed_weights():
    """Test that non-numeric and non-finite weights are skipped."""
    split = {"a": "lots", "b": float("nan"), "c": 100}

    assert draw_variant(split, lambda: 0.5) == "c"


def test_draw_variant_skips_weights_too_large_for_float():
    """Test that an integer weight beyond float range is skipped, not raised."""
    split = {"control": 10 ** 400, "variant": 50}

    assert draw_variant(split, lambda: 0.5) == "variant"
    assert draw_variant(split, lambda: 0.9) == "control"


def test_draw_variant_distribution():
    """Test that a 70/30 split is roughly respected."""
    rng = np.random.default_rng(11)
    split = {"control": 70, "variant": 30}

    draws = [draw_variant(split, rng.random) for _ in range(2000)]
    share = draws.count("control") / len(draws)

    assert 0.65 < share < 0.75


# ===== AssignmentStore =====


def test_session_id_is_stable(store, backend):
    first = store.session_id()

    assert first
    assert store.session_id() == first
    assert backend.get("visitor-1", SESSION_ID_KEY) == first


def test_claim_variant_returns_existing(store, backend):
    backend.set("visitor-1", f"{ASSIGNMENT_KEY_PREFIX}exp-1", "variant")

    assert store.claim_variant("exp-1", "control") == "variant"


def test_get_variant_ignores_empty_value(store, backend):
    backend.set("visitor-1", f"{ASSIGNMENT_KEY_PREFIX}exp-1", "")
    assert store.get_variant("exp-1") is None


# ===== Assignment =====


def test_first_assignment_records_impression(repository, dispatcher, store):
    """Test that a first assignment persists and records one impression."""
    service = make_service(repository, dispatcher, draw=0.25)

    result = service.get_assignment("checkout_button", store, identity_id="user-1")
    dispatcher.flush(timeout=2.0)

    assert result.variant == "control"
    assert result.value == "Buy now"
    assert result.is_control and not result.is_variant
    [impression] = repository.impressions("exp-1")
    assert impression.variant == "control"
    assert impression.session_id == store.session_id()
    assert impression.identity_id == "user-1"


def test_assignment_is_stable(repository, dispatcher, store):
    """Test that later calls return the stored variant without new impressions."""
    make_service(repository, dispatcher, draw=0.9).get_assignment("checkout_button", store)
    result = make_service(repository, dispatcher, draw=0.1).get_assignment(
        "checkout_button", store
    )
    dispatcher.flush(timeout=2.0)

    assert result.variant == "variant"
    assert result.is_variant
    assert len(repository.impressions("exp-1")) == 1


def test_concurrent_assignment_keeps_first_writer(repository, dispatcher, backend):
    """Test that a losing draw adopts the persisted variant and records nothing."""
    backend.set("visitor-1", f"{ASSIGNMENT_KEY_PREFIX}exp-1", "variant")
    store = StaleReadStore(VisitorStorage(backend, "visitor-1"))

    result = make_service(repository, dispatcher, draw=0.25).get_assignment(
        "checkout_button", store
    )
    dispatcher.flush(timeout=2.0)

    assert result.variant == "variant"
    assert repository.impressions("exp-1") == []


def test_unknown_or_inactive_experiment(repository, dispatcher, store):
    service = make_service(repository, dispatcher)

    assert service.get_assignment("missing", store) is None

    repository.set_active("exp-1", False)
    assert service.get_assignment("checkout_button", store) is None


def test_repository_failure_returns_none(dispatcher, store):
    service = make_service(BrokenRepository(), dispatcher)

    assert service.get_assignment("checkout_button", store) is None
    assert service.record_conversion("checkout_button", store) is False
    assert service.list_by_type("content") == []


def test_storage_failure_returns_none(repository, dispatcher):
    class FailingStorage:
        def get(self, key):
            raise OSError("disk full")

        def set(self, key, value):
            raise OSError("disk full")

        def set_if_absent(self, key, value):
            raise OSError("disk full")

    store = AssignmentStore(FailingStorage())
    service = make_service(repository, dispatcher)

    assert service.get_assignment("checkout_button", store) is None
    assert service.record_conversion("checkout_button", store) is False


def test_impression_sink_failure_is_swallowed(repository, dispatcher, store):
    """Test that assignment succeeds when the impression write fails."""
    service = make_service(repository, dispatcher, sink=FailingSink())

    result = service.get_assignment("checkout_button", store)
    dispatcher.flush(timeout=2.0)

    assert result.variant == "control"
    assert dispatcher.stats()["failed"] == 1


# ===== Conversions =====


def test_conversion_without_assignment(repository, dispatcher, store):
    service = make_service(repository, dispatcher)

    assert service.record_conversion("checkout_button", store, 10.0) is False


def test_conversion_updates_impression(repository, dispatcher, store):
    """Test that a conversion marks the visitor's impression, latest value wins."""
    service = make_service(repository, dispatcher)
    service.get_assignment("checkout_button", store)

    assert service.record_conversion("checkout_button", store, 42.0) is True
    assert service.record_conversion("checkout_button", store, 10.0) is True
    dispatcher.flush(timeout=2.0)

    [impression] = repository.impressions("exp-1")
    assert impression.converted
    assert impression.conversion_value == 10.0


def test_conversion_does_not_leak_across_visitors(repository, dispatcher, backend):
    service = make_service(repository, dispatcher)
    first = AssignmentStore(VisitorStorage(backend, "visitor-1"))
    second = AssignmentStore(VisitorStorage(backend, "visitor-2"))
    service.get_assignment("checkout_button", first)
    service.get_assignment("checkout_button", second)

    service.record_conversion("checkout_button", first, 5.0)
    dispatcher.flush(timeout=2.0)

    converted = [i.converted for i in repository.impressions("exp-1")]
    assert sorted(converted) == [False, True]


# ===== Listing =====


def test_list_by_type(repository, dispatcher):
    repository.create_experiment(
        name="hero_banner",
        variants=[Variant("control"), Variant("variant")],
        traffic_split={"control": 70, "variant": 30},
        test_type="layout",
        target_id="homepage",
    )
    service = make_service(repository, dispatcher)

    assert [e.name for e in service.list_by_type("content")] == ["checkout_button"]
    assert [e.name for e in service.list_by_type("layout", "homepage")] == ["hero_banner"]
    assert service.list_by_type("layout", "cart") == []

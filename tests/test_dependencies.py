"""Tests for engine construction in the dependency layer."""

import threading
import time

import pytest

from storefront.api import dependencies
from tests.conftest import build_test_engine


@pytest.fixture
def fresh_engine_slot(monkeypatch):
    """Clear the cached engine for the test and restore it afterwards."""
    monkeypatch.setattr(dependencies, "_engine", None)
    yield
    dependencies.shutdown_engine()


def test_concurrent_first_requests_build_one_engine(fresh_engine_slot, monkeypatch):
    """Test that simultaneous first calls share a single engine and dispatcher."""
    built = []

    def slow_build(settings):
        time.sleep(0.05)
        engine = build_test_engine()
        built.append(engine)
        return engine

    monkeypatch.setattr(dependencies, "build_engine", slow_build)

    barrier = threading.Barrier(8)
    results = []
    results_lock = threading.Lock()

    def worker():
        barrier.wait()
        engine = dependencies.get_engine()
        with results_lock:
            results.append(engine)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5.0)

    assert len(built) == 1
    assert len(results) == 8
    assert all(engine is built[0] for engine in results)


def test_shutdown_drops_cached_engine(fresh_engine_slot, monkeypatch):
    monkeypatch.setattr(dependencies, "build_engine", lambda settings: build_test_engine())

    first = dependencies.get_engine()
    dependencies.shutdown_engine()
    second = dependencies.get_engine()

    assert first is not second
    assert dependencies.get_engine() is second

"""Tests for the chat-completions recommendation generator.

The HTTP session is replaced with a mock; no network access is needed.
"""

from unittest.mock import MagicMock

import pytest
import requests

from storefront.personalization.catalog import CatalogItem
from storefront.personalization.generator import (
    ChatCompletionGenerator,
    RecommendationGeneratorError,
    VisitorContext,
    build_prompt,
    extract_product_ids,
)


def make_response(status_code=200, content='["p2", "p1"]'):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = {"choices": [{"message": {"content": content}}]}
    return response


@pytest.fixture
def catalog():
    return [
        CatalogItem(id="p1", category="garten", price=12.5, name="Rake"),
        CatalogItem(id="p2", category="elektronik", price=99.0, discount_percent=20, name="Radio"),
        CatalogItem(id="p3", category="sport", price=30.0, name="Ball"),
    ]


@pytest.fixture
def context():
    return VisitorContext(
        browsed_categories={"garten": 1, "elektronik": 4},
        purchased_categories=["sport"],
        recently_viewed=["p3"],
        search_queries=["radio", "rake"],
    )


@pytest.fixture
def session():
    session = MagicMock()
    session.post.return_value = make_response()
    return session


@pytest.fixture
def generator(session):
    return ChatCompletionGenerator(
        endpoint_url="https://llm.example.test/v1/chat/completions",
        api_key="secret",
        model="test-model",
        timeout=2.0,
        session=session,
    )


# ===== Prompt and parsing =====


def test_build_prompt_contains_context(catalog, context):
    """Test that the prompt lists categories by count, searches and products."""
    prompt = build_prompt(catalog, context, limit=2)

    assert "Most browsed categories: elektronik, garten" in prompt
    assert "Purchased categories: sport" in prompt
    assert "Search terms: radio, rake" in prompt
    assert "[p2] Radio (elektronik) - 99.00 (-20%)" in prompt
    assert "pick the 2 best products" in prompt


def test_build_prompt_without_signals(catalog):
    """Test that missing signals are rendered as none."""
    prompt = build_prompt(catalog, VisitorContext(), limit=3)

    assert "Most browsed categories: none" in prompt
    assert "Search terms: none" in prompt


def test_extract_product_ids_from_prose():
    """Test that the first JSON array is extracted from surrounding text."""
    assert extract_product_ids('Sure! ["p1", "p2"] hope this helps') == ["p1", "p2"]


@pytest.mark.parametrize("content", ["no array here", "[p1, p2]", ""])
def test_extract_product_ids_rejects_bad_content(content):
    """Test that unusable replies raise a generator error."""
    with pytest.raises(RecommendationGeneratorError):
        extract_product_ids(content)


# ===== HTTP calls =====


def test_generate_maps_ids_to_catalog(generator, session, catalog, context):
    """Test that returned ids are resolved against the catalog in order."""
    result = generator.generate(catalog, context, limit=5)

    assert [item.id for item in result.items] == ["p2", "p1"]
    assert result.reasoning == "AI-powered personalized recommendations"

    _, kwargs = session.post.call_args
    assert kwargs["timeout"] == 2.0
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert kwargs["json"]["model"] == "test-model"


def test_generate_drops_unknown_and_duplicate_ids(generator, session, catalog, context):
    """Test that hallucinated or repeated ids are ignored."""
    session.post.return_value = make_response(content='["zzz", "p1", "p1", "p3"]')

    result = generator.generate(catalog, context, limit=5)

    assert [item.id for item in result.items] == ["p1", "p3"]


def test_generate_truncates_to_limit(generator, session, catalog, context):
    session.post.return_value = make_response(content='["p1", "p2", "p3"]')

    result = generator.generate(catalog, context, limit=2)

    assert len(result.items) == 2


def test_generate_empty_catalog_skips_request(generator, session, context):
    """Test that an empty catalog returns without calling the endpoint."""
    result = generator.generate([], context, limit=3)

    assert result.items == []
    assert result.reasoning == "No products provided"
    session.post.assert_not_called()


def test_generate_non_200_raises(generator, session, catalog, context):
    """Test that a non-200 status raises with the status code attached."""
    session.post.return_value = make_response(status_code=503)

    with pytest.raises(RecommendationGeneratorError) as exc_info:
        generator.generate(catalog, context, limit=3)

    assert exc_info.value.status_code == 503


def test_generate_network_error_raises(generator, session, catalog, context):
    """Test that transport errors are wrapped."""
    session.post.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(RecommendationGeneratorError):
        generator.generate(catalog, context, limit=3)


def test_generate_unexpected_body_raises(generator, session, catalog, context):
    """Test that a body without choices raises."""
    response = make_response()
    response.json.return_value = {"error": "quota"}
    session.post.return_value = response

    with pytest.raises(RecommendationGeneratorError):
        generator.generate(catalog, context, limit=3)

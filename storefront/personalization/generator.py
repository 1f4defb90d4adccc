"""Remote AI recommendation generator.

Asks an OpenAI-compatible chat completions endpoint to pick products for a
visitor. The caller treats every failure as a signal to fall back to local
scoring, so this module raises RecommendationGeneratorError on anything
unexpected instead of guessing.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from storefront.personalization.catalog import CatalogItem

# Configure module logger
logger = logging.getLogger(__name__)

MAX_PROMPT_PRODUCTS = 50
MAX_PROMPT_CATEGORIES = 5
MAX_PROMPT_SEARCH_TERMS = 5
MAX_COMPLETION_TOKENS = 500
TEMPERATURE = 0.3

_ID_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


class RecommendationGeneratorError(RuntimeError):
    """Raised when the remote generator cannot produce recommendations."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class VisitorContext:
    """Signals shared with the generator."""

    browsed_categories: Dict[str, int] = field(default_factory=dict)
    purchased_categories: List[str] = field(default_factory=list)
    recently_viewed: List[str] = field(default_factory=list)
    search_queries: List[str] = field(default_factory=list)


@dataclass
class GeneratedRecommendations:
    items: List[CatalogItem]
    reasoning: str = ""


class RecommendationGenerator(Protocol):
    def generate(
        self,
        catalog: Sequence[CatalogItem],
        context: VisitorContext,
        limit: int,
    ) -> GeneratedRecommendations:
        ...


def build_prompt(catalog: Sequence[CatalogItem], context: VisitorContext, limit: int) -> str:
    top_categories = [
        category
        for category, _ in sorted(
            context.browsed_categories.items(), key=lambda entry: entry[1], reverse=True
        )[:MAX_PROMPT_CATEGORIES]
    ]
    product_lines = []
    for item in catalog[:MAX_PROMPT_PRODUCTS]:
        line = f"[{item.id}] {item.name or item.id} ({item.category}) - {item.price:.2f}"
        if item.discount_percent:
            line += f" (-{item.discount_percent:g}%)"
        product_lines.append(line)

    return (
        "You are the recommendation system of an online shop.\n\n"
        f"Analyse the shopper's behaviour and pick the {limit} best products.\n\n"
        "SHOPPER CONTEXT:\n"
        f"- Most browsed categories: {', '.join(top_categories) or 'none'}\n"
        f"- Purchased categories: {', '.join(context.purchased_categories) or 'none'}\n"
        f"- Search terms: {', '.join(context.search_queries[:MAX_PROMPT_SEARCH_TERMS]) or 'none'}\n\n"
        f"AVAILABLE PRODUCTS ({len(catalog)} total):\n"
        + "\n".join(product_lines)
        + "\n\nAnswer ONLY with a JSON array of product ids ordered by relevance:\n"
        '["id1", "id2", "id3", ...]\n\n'
        "Prioritise:\n"
        "1. Products from the shopper's preferred categories\n"
        "2. Products with good discounts\n"
        "3. Products that fit previous purchases\n"
        "4. Some variety to discover new categories"
    )


def extract_product_ids(content: str) -> List[str]:
    """Pull the first JSON array of ids out of a model reply."""
    match = _ID_ARRAY_PATTERN.search(content or "")
    if not match:
        raise RecommendationGeneratorError("Generator reply contains no id array")
    try:
        ids = json.loads(match.group(0))
    except ValueError as e:
        raise RecommendationGeneratorError(f"Generator reply is not valid JSON: {e}") from e
    if not isinstance(ids, list):
        raise RecommendationGeneratorError("Generator reply is not an array")
    return [str(product_id) for product_id in ids]


class ChatCompletionGenerator:
    """Recommendation generator backed by a chat completions API."""

    def __init__(
        self,
        endpoint_url: str,
        api_key: str,
        model: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint_url = endpoint_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._session = session or requests.Session()

    def generate(
        self,
        catalog: Sequence[CatalogItem],
        context: VisitorContext,
        limit: int,
    ) -> GeneratedRecommendations:
        if not catalog:
            return GeneratedRecommendations(items=[], reasoning="No products provided")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": build_prompt(catalog, context, limit)}],
            "max_tokens": MAX_COMPLETION_TOKENS,
            "temperature": TEMPERATURE,
        }
        try:
            response = self._session.post(
                self.endpoint_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RecommendationGeneratorError(f"Generator request failed: {e}") from e

        if response.status_code != 200:
            raise RecommendationGeneratorError(
                f"Generator returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise RecommendationGeneratorError(f"Unexpected generator response: {e}") from e

        by_id = {item.id: item for item in catalog}
        items = []
        for product_id in extract_product_ids(content):
            item = by_id.get(product_id)
            if item is not None and item not in items:
                items.append(item)

        logger.info(
            "Generator returned recommendations",
            extra={"num_items": len(items), "limit": limit},
        )
        return GeneratedRecommendations(
            items=items[:limit],
            reasoning="AI-powered personalized recommendations",
        )

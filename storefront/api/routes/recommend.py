"""Recommendation endpoints for the Storefront API.

This module serves the personalized feeds: "for you", "continue shopping",
and the product-page "similar" and "complementary" lists. Feeds degrade to
shorter or empty lists instead of returning errors.
"""

import logging
import time
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from storefront.api.dependencies import Engine, Visitor, get_engine, get_signal_store, get_visitor
from storefront.api.metrics import metrics_service
from storefront.personalization.catalog import CatalogItem
from storefront.personalization.scoring import (
    DEFAULT_COMPLEMENTARY_COUNT,
    DEFAULT_CONTINUE_SHOPPING_LIMIT,
    DEFAULT_FOR_YOU_LIMIT,
    DEFAULT_SIMILAR_COUNT,
)
from storefront.personalization.service import (
    SOURCE_FALLBACK,
    SOURCE_SCORER,
    SOURCE_UNAVAILABLE,
)
from storefront.personalization.signals import SignalStore

# Configure module logger
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(
    prefix="/recommend",
    tags=["recommendations"],
)

MAX_FEED_SIZE = 50

# Sources counted as degraded answers
DEGRADED_SOURCES = frozenset({SOURCE_FALLBACK, SOURCE_UNAVAILABLE})


class CatalogItemModel(BaseModel):
    id: str
    name: str = ""
    category: str
    price: float
    discount_percent: Optional[float] = None
    tags: List[str] = Field(default_factory=list)

    @classmethod
    def from_item(cls, item: CatalogItem) -> "CatalogItemModel":
        return cls(**item.to_dict())


class ForYouResponse(BaseModel):
    """Response model for the "for you" feed.

    Attributes:
        items: Ranked catalog items.
        reasoning: Explanation from the remote generator, empty otherwise.
        source: "generator", "scorer", "fallback" (generator failed) or
            "unavailable" (catalog failed).
    """

    items: List[CatalogItemModel]
    reasoning: str = ""
    source: str = SOURCE_SCORER


class ItemListResponse(BaseModel):
    items: List[CatalogItemModel]


def _elapsed_ms(start_time: float) -> float:
    return (time.time() - start_time) * 1000


@router.get("/for-you", response_model=ForYouResponse)
def for_you(
    limit: int = Query(DEFAULT_FOR_YOU_LIMIT, ge=1, le=MAX_FEED_SIZE),
    visitor: Visitor = Depends(get_visitor),
    signals: SignalStore = Depends(get_signal_store),
    engine: Engine = Depends(get_engine),
) -> ForYouResponse:
    """Get the general personalized feed for the visitor.

    Example:
        GET /recommend/for-you?limit=8 with header X-Visitor-Id
    """
    start_time = time.time()
    result = engine.personalization.for_you(signals, visitor.identity_id, limit)
    metrics_service.record_request(
        "for_you", _elapsed_ms(start_time), degraded=result.source in DEGRADED_SOURCES
    )
    return ForYouResponse(
        items=[CatalogItemModel.from_item(item) for item in result.items],
        reasoning=result.reasoning,
        source=result.source,
    )


@router.get("/continue-shopping", response_model=ItemListResponse)
def continue_shopping(
    limit: int = Query(DEFAULT_CONTINUE_SHOPPING_LIMIT, ge=1, le=MAX_FEED_SIZE),
    signals: SignalStore = Depends(get_signal_store),
    engine: Engine = Depends(get_engine),
) -> ItemListResponse:
    """Get unseen items from the visitor's most browsed category."""
    start_time = time.time()
    items = engine.personalization.continue_shopping(signals, limit)
    metrics_service.record_request("continue_shopping", _elapsed_ms(start_time))
    return ItemListResponse(items=[CatalogItemModel.from_item(item) for item in items])


@router.get("/similar/{item_id}", response_model=ItemListResponse)
def similar(
    item_id: str,
    count: int = Query(DEFAULT_SIMILAR_COUNT, ge=1, le=MAX_FEED_SIZE),
    engine: Engine = Depends(get_engine),
) -> ItemListResponse:
    """Get items similar to a product (same category or shared tags)."""
    start_time = time.time()
    items = engine.personalization.similar_to(item_id, count)
    metrics_service.record_request("similar", _elapsed_ms(start_time))
    return ItemListResponse(items=[CatalogItemModel.from_item(item) for item in items])


@router.get("/complementary/{item_id}", response_model=ItemListResponse)
def complementary(
    item_id: str,
    count: int = Query(DEFAULT_COMPLEMENTARY_COUNT, ge=1, le=MAX_FEED_SIZE),
    engine: Engine = Depends(get_engine),
) -> ItemListResponse:
    """Get affordable items from other categories ("bought together")."""
    start_time = time.time()
    items = engine.personalization.complementary(item_id, count)
    metrics_service.record_request("complementary", _elapsed_ms(start_time))
    return ItemListResponse(items=[CatalogItemModel.from_item(item) for item in items])

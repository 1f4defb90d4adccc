"""Behavioural signal endpoints.

The storefront reports category views, product views and searches here.
Recording is best-effort and always answers 204.
"""

from typing import Dict, List

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from storefront.api.dependencies import get_signal_store
from storefront.personalization.signals import SignalStore

router = APIRouter(
    prefix="/signals",
    tags=["signals"],
)


class CategoryViewRequest(BaseModel):
    category: str = Field(..., min_length=1)


class ItemViewRequest(BaseModel):
    item_id: str = Field(..., min_length=1)


class SearchRequest(BaseModel):
    term: str


class ProfileResponse(BaseModel):
    category_counts: Dict[str, int]
    recently_viewed: List[str]
    recent_search_terms: List[str]
    has_history: bool


@router.post("/category-view", status_code=status.HTTP_204_NO_CONTENT)
def record_category_view(
    request: CategoryViewRequest,
    signals: SignalStore = Depends(get_signal_store),
) -> Response:
    signals.record_category_view(request.category)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/item-view", status_code=status.HTTP_204_NO_CONTENT)
def record_item_view(
    request: ItemViewRequest,
    signals: SignalStore = Depends(get_signal_store),
) -> Response:
    signals.record_item_viewed(request.item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/search", status_code=status.HTTP_204_NO_CONTENT)
def record_search(
    request: SearchRequest,
    signals: SignalStore = Depends(get_signal_store),
) -> Response:
    """Record a search term; terms under two characters are ignored."""
    signals.record_search(request.term)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/profile", response_model=ProfileResponse)
def read_profile(signals: SignalStore = Depends(get_signal_store)) -> ProfileResponse:
    profile = signals.read_profile()
    return ProfileResponse(
        category_counts=profile.category_counts,
        recently_viewed=profile.recently_viewed,
        recent_search_terms=profile.recent_search_terms,
        has_history=profile.has_history,
    )

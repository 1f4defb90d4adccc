"""Recommendation scoring.

Ranks catalog items for a visitor from browsing signals and purchase
history, and provides the item-anchored "similar" and "complementary"
feeds shown on product pages.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from storefront.personalization.catalog import CatalogItem
from storefront.personalization.signals import BrowsingProfile

# Configure module logger
logger = logging.getLogger(__name__)

# Scoring weights
CATEGORY_VIEW_WEIGHT = 10.0
PURCHASED_CATEGORY_BOOST = 50.0
MAX_JITTER = 5.0
SAME_CATEGORY_WEIGHT = 10.0
SIMILAR_PRICE_RANGE = 0.3
COMPLEMENTARY_PRICE_FACTOR = 1.5

DEFAULT_FOR_YOU_LIMIT = 8
DEFAULT_CONTINUE_SHOPPING_LIMIT = 4
DEFAULT_SIMILAR_COUNT = 4
DEFAULT_COMPLEMENTARY_COUNT = 3


@dataclass(frozen=True)
class ScoredCandidate:
    item: CatalogItem
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"item": self.item.to_dict(), "score": round(self.score, 4)}


def _rank(scores: np.ndarray) -> np.ndarray:
    """Indices of scores in descending order, stable for equal scores."""
    return np.argsort(-scores, kind="stable")


def top_category(category_counts: Dict[str, int]) -> Optional[str]:
    """Most browsed category; the first one encountered wins ties."""
    if not category_counts:
        return None
    return max(category_counts, key=category_counts.get)


class RecommendationScorer:
    """Weighted scoring of catalog items against a BrowsingProfile.

    The random source only feeds the jitter term of the "for you" feed and
    the shuffle of the complementary feed; pass a seeded generator for
    reproducible output.
    """

    def __init__(self, rng: Optional[np.random.Generator] = None) -> None:
        self.rng = rng if rng is not None else np.random.default_rng()

    def score_for_you(
        self,
        catalog: Iterable[CatalogItem],
        profile: BrowsingProfile,
        purchased_categories: Iterable[str] = (),
        limit: int = DEFAULT_FOR_YOU_LIMIT,
    ) -> List[ScoredCandidate]:
        """Score unseen items by category affinity, purchases and discount."""
        seen = set(profile.recently_viewed)
        purchased = set(purchased_categories)
        candidates = [item for item in catalog if item.id not in seen]

        if not candidates or limit <= 0:
            return []

        category_term = np.array(
            [profile.category_counts.get(item.category, 0) for item in candidates],
            dtype=float,
        ) * CATEGORY_VIEW_WEIGHT
        purchase_term = np.array(
            [PURCHASED_CATEGORY_BOOST if item.category in purchased else 0.0 for item in candidates]
        )
        discount_term = np.array(
            [max(item.discount_percent or 0.0, 0.0) for item in candidates]
        )
        jitter = self.rng.uniform(0.0, MAX_JITTER, size=len(candidates))

        scores = category_term + purchase_term + discount_term + jitter
        order = _rank(scores)[:limit]

        logger.debug(
            "Scored for-you candidates",
            extra={
                "num_candidates": len(candidates),
                "num_excluded": len(seen),
                "limit": limit,
            },
        )

        return [ScoredCandidate(candidates[i], float(scores[i])) for i in order]

    def continue_shopping(
        self,
        catalog: Iterable[CatalogItem],
        profile: BrowsingProfile,
        limit: int = DEFAULT_CONTINUE_SHOPPING_LIMIT,
    ) -> List[CatalogItem]:
        """Unseen items from the most browsed category, in catalog order."""
        anchor = top_category(profile.category_counts)
        if anchor is None or limit <= 0:
            return []

        seen = set(profile.recently_viewed)
        matches = [
            item for item in catalog
            if item.category == anchor and item.id not in seen
        ]
        return matches[:limit]

    def similar_to(
        self,
        catalog: Iterable[CatalogItem],
        anchor: CatalogItem,
        count: int = DEFAULT_SIMILAR_COUNT,
    ) -> List[ScoredCandidate]:
        """Items sharing the anchor's category or a tag, closest price first."""
        candidates = [
            item for item in catalog
            if item.id != anchor.id
            and (item.category == anchor.category or anchor.tags & item.tags)
        ]
        if not candidates or count <= 0:
            return []

        same_category = np.array(
            [item.category == anchor.category for item in candidates], dtype=float
        )
        price_delta = np.abs(
            np.array([item.price for item in candidates], dtype=float) - anchor.price
        )
        price_range = anchor.price * SIMILAR_PRICE_RANGE
        if price_range > 0:
            price_term = 1.0 / (1.0 + price_delta / price_range)
        else:
            # Free anchor item: only identically priced items are "close".
            price_term = (price_delta == 0).astype(float)

        scores = SAME_CATEGORY_WEIGHT * same_category + price_term
        order = _rank(scores)[:count]
        return [ScoredCandidate(candidates[i], float(scores[i])) for i in order]

    def complementary(
        self,
        catalog: Iterable[CatalogItem],
        anchor: CatalogItem,
        count: int = DEFAULT_COMPLEMENTARY_COUNT,
    ) -> List[CatalogItem]:
        """Random affordable items from other categories.

        Stands in for "frequently bought together" without co-purchase data,
        so the order is deliberately random.
        """
        max_price = anchor.price * COMPLEMENTARY_PRICE_FACTOR
        candidates = [
            item for item in catalog
            if item.id != anchor.id
            and item.category != anchor.category
            and item.price <= max_price
        ]
        if not candidates or count <= 0:
            return []

        order = self.rng.permutation(len(candidates))[:count]
        return [candidates[i] for i in order]

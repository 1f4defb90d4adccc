"""Personalization service.

Combines the signal store, catalog, purchase history, scorer and the
optional remote generator into the feeds served to the presentation layer.
Every collaborator failure degrades the feed instead of failing it.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from storefront.personalization.catalog import CatalogItem, CatalogSource, PurchaseHistory
from storefront.personalization.generator import (
    RecommendationGenerator,
    VisitorContext,
)
from storefront.personalization.scoring import (
    DEFAULT_COMPLEMENTARY_COUNT,
    DEFAULT_CONTINUE_SHOPPING_LIMIT,
    DEFAULT_FOR_YOU_LIMIT,
    DEFAULT_SIMILAR_COUNT,
    RecommendationScorer,
)
from storefront.personalization.signals import BrowsingProfile, SignalStore

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_CATALOG_LIMIT = 100

SOURCE_GENERATOR = "generator"
SOURCE_SCORER = "scorer"
SOURCE_FALLBACK = "fallback"
SOURCE_UNAVAILABLE = "unavailable"


@dataclass
class RecommendationResult:
    items: List[CatalogItem]
    reasoning: str = ""
    source: str = SOURCE_SCORER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "reasoning": self.reasoning,
            "source": self.source,
        }


class PersonalizationService:
    """Builds the recommendation feeds for one request at a time."""

    def __init__(
        self,
        catalog: CatalogSource,
        purchase_history: PurchaseHistory,
        scorer: Optional[RecommendationScorer] = None,
        generator: Optional[RecommendationGenerator] = None,
        catalog_limit: int = DEFAULT_CATALOG_LIMIT,
    ) -> None:
        self.catalog = catalog
        self.purchase_history = purchase_history
        self.scorer = scorer or RecommendationScorer()
        self.generator = generator
        self.catalog_limit = catalog_limit

        logger.info(
            f"Initialized PersonalizationService: "
            f"catalog_limit={catalog_limit}, "
            f"generator={'enabled' if generator else 'disabled'}"
        )

    def _load_catalog(self) -> Optional[List[CatalogItem]]:
        try:
            return self.catalog.list_catalog(self.catalog_limit)
        except Exception as e:
            logger.error(
                "Catalog unavailable",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            return None

    def _purchased_categories(self, identity_id: Optional[str]) -> Set[str]:
        if not identity_id:
            return set()
        try:
            return set(self.purchase_history.purchased_categories(identity_id))
        except Exception as e:
            logger.warning(
                "Purchase history unavailable, scoring without purchase boost",
                extra={"identity_id": identity_id, "error": str(e)},
            )
            return set()

    def _score(
        self,
        catalog: List[CatalogItem],
        profile: BrowsingProfile,
        purchased: Set[str],
        limit: int,
    ) -> List[CatalogItem]:
        scored = self.scorer.score_for_you(catalog, profile, purchased, limit)
        return [candidate.item for candidate in scored]

    def for_you(
        self,
        signals: SignalStore,
        identity_id: Optional[str] = None,
        limit: int = DEFAULT_FOR_YOU_LIMIT,
    ) -> RecommendationResult:
        """General "for you" feed.

        Tries the remote generator first when configured. Its picks are
        stripped of recently viewed items and topped up with locally scored
        items; any generator error falls back to local scoring entirely and
        the result is tagged with the "fallback" source.
        """
        start_time = time.time()

        catalog = self._load_catalog()
        if not catalog:
            return RecommendationResult(items=[], source=SOURCE_UNAVAILABLE)

        profile = signals.read_profile()
        purchased = self._purchased_categories(identity_id)
        source = SOURCE_SCORER

        if self.generator is not None:
            seen = set(profile.recently_viewed)
            context = VisitorContext(
                browsed_categories=dict(profile.category_counts),
                purchased_categories=sorted(purchased),
                recently_viewed=list(profile.recently_viewed),
                search_queries=list(profile.recent_search_terms),
            )
            try:
                generated = self.generator.generate(catalog, context, limit)
                picked = [item for item in generated.items if item.id not in seen][:limit]
                if len(picked) < limit:
                    picked_ids = {item.id for item in picked}
                    remainder = [item for item in catalog if item.id not in picked_ids]
                    picked.extend(
                        self._score(remainder, profile, purchased, limit - len(picked))
                    )
                logger.info(
                    "Served generator recommendations",
                    extra={
                        "num_items": len(picked),
                        "duration_ms": round((time.time() - start_time) * 1000, 2),
                    },
                )
                return RecommendationResult(
                    items=picked,
                    reasoning=generated.reasoning,
                    source=SOURCE_GENERATOR,
                )
            except Exception as e:
                logger.warning(
                    "Generator failed, falling back to local scoring",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )
                source = SOURCE_FALLBACK

        items = self._score(catalog, profile, purchased, limit)
        logger.info(
            "Served scored recommendations",
            extra={
                "num_items": len(items),
                "duration_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
        return RecommendationResult(items=items, reasoning="", source=source)

    def continue_shopping(
        self,
        signals: SignalStore,
        limit: int = DEFAULT_CONTINUE_SHOPPING_LIMIT,
    ) -> List[CatalogItem]:
        catalog = self._load_catalog()
        if not catalog:
            return []
        return self.scorer.continue_shopping(catalog, signals.read_profile(), limit)

    def _anchor(self, item_id: str) -> Optional[CatalogItem]:
        try:
            return self.catalog.get_catalog_item(item_id)
        except Exception as e:
            logger.error(
                "Catalog lookup failed",
                extra={"item_id": item_id, "error": str(e)},
            )
            return None

    def similar_to(self, item_id: str, count: int = DEFAULT_SIMILAR_COUNT) -> List[CatalogItem]:
        anchor = self._anchor(item_id)
        if anchor is None:
            logger.debug(f"No anchor item {item_id} for similar products")
            return []
        catalog = self._load_catalog()
        if not catalog:
            return []
        return [candidate.item for candidate in self.scorer.similar_to(catalog, anchor, count)]

    def complementary(
        self,
        item_id: str,
        count: int = DEFAULT_COMPLEMENTARY_COUNT,
    ) -> List[CatalogItem]:
        anchor = self._anchor(item_id)
        if anchor is None:
            logger.debug(f"No anchor item {item_id} for complementary products")
            return []
        catalog = self._load_catalog()
        if not catalog:
            return []
        return self.scorer.complementary(catalog, anchor, count)

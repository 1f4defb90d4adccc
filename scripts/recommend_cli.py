"""CLI script for previewing recommendation feeds.

Useful for testing and evaluation. Loads a catalog CSV, replays a few
browsing signals into an in-memory visitor profile and prints the feeds.

Usage:
    python scripts/recommend_cli.py --catalog data/catalog.csv \\
        --category electronics --category electronics --viewed p0001
"""

import argparse
import logging
import sys
from typing import List

import numpy as np

from storefront.personalization.catalog import (
    CatalogItem,
    InMemoryPurchaseHistory,
    load_catalog_csv,
    load_purchase_history_csv,
)
from storefront.personalization.scoring import RecommendationScorer
from storefront.personalization.service import PersonalizationService
from storefront.personalization.signals import SignalStore
from storefront.personalization.storage import InMemoryKeyValueStore, VisitorStorage

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s"
)
logger = logging.getLogger(__name__)


def _print_items(title: str, items: List[CatalogItem]) -> None:
    print(f"\n{title}")
    print("-" * len(title))
    if not items:
        print("  (none)")
    for rank, item in enumerate(items, start=1):
        discount = f" -{item.discount_percent:g}%" if item.discount_percent else ""
        print(f"  {rank:2d}. [{item.id}] {item.category:<12} {item.price:>8.2f}{discount}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Preview storefront recommendation feeds")
    parser.add_argument("--catalog", required=True, help="Catalog CSV path")
    parser.add_argument("--orders", help="Orders CSV path (user_id,product_id)")
    parser.add_argument("--user", help="Identity id used for purchase history")
    parser.add_argument("--category", action="append", default=[], help="Category view (repeatable)")
    parser.add_argument("--viewed", action="append", default=[], help="Viewed item id (repeatable)")
    parser.add_argument("--search", action="append", default=[], help="Search term (repeatable)")
    parser.add_argument("--limit", type=int, default=8, help="Size of the for-you feed")
    parser.add_argument("--seed", type=int, help="Seed for the scoring jitter")
    args = parser.parse_args()

    try:
        catalog = load_catalog_csv(args.catalog)
        purchases = (
            load_purchase_history_csv(args.orders, catalog)
            if args.orders
            else InMemoryPurchaseHistory()
        )
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load data: {e}")
        return 1

    signals = SignalStore(VisitorStorage(InMemoryKeyValueStore(), "cli"))
    for category in args.category:
        signals.record_category_view(category)
    for item_id in args.viewed:
        signals.record_item_viewed(item_id)
    for term in args.search:
        signals.record_search(term)

    service = PersonalizationService(
        catalog=catalog,
        purchase_history=purchases,
        scorer=RecommendationScorer(np.random.default_rng(args.seed)),
        catalog_limit=max(len(catalog), 1),
    )

    result = service.for_you(signals, identity_id=args.user, limit=args.limit)
    _print_items("For you", result.items)
    _print_items("Continue shopping", service.continue_shopping(signals))
    if args.viewed:
        _print_items(f"Similar to {args.viewed[-1]}", service.similar_to(args.viewed[-1]))
        _print_items(
            f"Bought together with {args.viewed[-1]}",
            service.complementary(args.viewed[-1]),
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())

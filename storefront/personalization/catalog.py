"""Catalog and purchase-history collaborators.

Defines the read-only product projection used for scoring and the
interfaces to the catalog store and order history, together with
in-memory implementations that can be loaded from CSV exports.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Set

import pandas as pd

# Configure module logger
logger = logging.getLogger(__name__)

TAG_SEPARATOR = "|"
CATALOG_COLUMNS = {"id", "category", "price"}
ORDER_COLUMNS = {"user_id", "product_id"}


@dataclass(frozen=True)
class CatalogItem:
    """Product fields needed by the recommendation feeds."""

    id: str
    category: str
    price: float
    discount_percent: Optional[float] = None
    tags: FrozenSet[str] = field(default_factory=frozenset)
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price": self.price,
            "discount_percent": self.discount_percent,
            "tags": sorted(self.tags),
        }


class CatalogSource(Protocol):
    """Product catalog lookups."""

    def list_catalog(self, limit: int) -> List[CatalogItem]:
        ...

    def get_catalog_item(self, item_id: str) -> Optional[CatalogItem]:
        ...


class PurchaseHistory(Protocol):
    """Categories an authenticated identity has bought from."""

    def purchased_categories(self, identity_id: Optional[str]) -> Set[str]:
        ...


class InMemoryCatalog:
    """Catalog held in memory in its natural (insertion) order."""

    def __init__(self, items: Iterable[CatalogItem] = ()) -> None:
        self._items: Dict[str, CatalogItem] = {}
        for item in items:
            self._items[item.id] = item

    def __len__(self) -> int:
        return len(self._items)

    def list_catalog(self, limit: int) -> List[CatalogItem]:
        return list(self._items.values())[: max(limit, 0)]

    def get_catalog_item(self, item_id: str) -> Optional[CatalogItem]:
        return self._items.get(item_id)


class InMemoryPurchaseHistory:
    """Purchased categories keyed by identity id."""

    def __init__(self, categories_by_identity: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        self._categories = {
            identity: set(categories)
            for identity, categories in (categories_by_identity or {}).items()
        }

    def purchased_categories(self, identity_id: Optional[str]) -> Set[str]:
        if not identity_id:
            return set()
        return set(self._categories.get(identity_id, set()))


def _parse_tags(raw: Any) -> FrozenSet[str]:
    if not isinstance(raw, str) or not raw.strip():
        return frozenset()
    return frozenset(tag.strip() for tag in raw.split(TAG_SEPARATOR) if tag.strip())


def load_catalog_csv(csv_path: str) -> InMemoryCatalog:
    """Load a catalog export into memory.

    Args:
        csv_path: CSV with columns id, category, price and optionally name,
            discount_percent and tags (tags separated by "|").

    Returns:
        InMemoryCatalog in file order.

    Raises:
        FileNotFoundError: If the CSV does not exist.
        ValueError: If required columns are missing.
    """
    if not Path(csv_path).exists():
        raise FileNotFoundError(f"Catalog CSV not found: {csv_path}")

    df = pd.read_csv(csv_path, dtype={"id": str, "category": str})
    missing = CATALOG_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Catalog CSV missing required columns: {missing}")

    items = []
    for row in df.to_dict(orient="records"):
        discount = row.get("discount_percent")
        name = row.get("name")
        items.append(
            CatalogItem(
                id=str(row["id"]),
                category=str(row["category"]),
                price=float(row["price"]),
                discount_percent=None if pd.isna(discount) else float(discount),
                tags=_parse_tags(row.get("tags")),
                name="" if pd.isna(name) else str(name),
            )
        )

    logger.info(f"Loaded {len(items)} catalog items from {csv_path}")
    return InMemoryCatalog(items)


def load_purchase_history_csv(
    orders_path: str,
    catalog: CatalogSource,
) -> InMemoryPurchaseHistory:
    """Build purchased categories per user from order lines.

    Args:
        orders_path: CSV with user_id and product_id columns.
        catalog: Catalog used to resolve product categories. Order lines for
            unknown products are ignored.

    Returns:
        InMemoryPurchaseHistory keyed by user id.
    """
    if not Path(orders_path).exists():
        raise FileNotFoundError(f"Orders CSV not found: {orders_path}")

    df = pd.read_csv(orders_path, dtype={"user_id": str, "product_id": str})
    missing = ORDER_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Orders CSV missing required columns: {missing}")

    def category_of(product_id: str) -> Optional[str]:
        item = catalog.get_catalog_item(product_id)
        return item.category if item is not None else None

    df["category"] = df["product_id"].map(category_of)
    resolved = df.dropna(subset=["category"])
    if len(resolved) < len(df):
        logger.warning(
            f"Ignored {len(df) - len(resolved)} order lines for unknown products"
        )

    categories_by_user = (
        resolved.groupby("user_id")["category"].agg(lambda c: set(c)).to_dict()
    )
    logger.info(f"Loaded purchase history for {len(categories_by_user)} users")
    return InMemoryPurchaseHistory(categories_by_user)

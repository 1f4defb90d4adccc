"""Generate a fake catalog, order history and experiments for development.

This module creates synthetic storefront data so the API can be run
locally: a product catalog CSV, an order-lines CSV and a JSON file with
a couple of experiment definitions.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Then point the service at it:
        $ STOREFRONT_CATALOG_PATH=data/catalog.csv \\
          STOREFRONT_ORDERS_PATH=data/orders.csv \\
          STOREFRONT_EXPERIMENTS_PATH=data/experiments.json \\
          uvicorn storefront.api.main:app
"""

import json
import random
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

# Default configuration constants
DEFAULT_NUM_PRODUCTS = 100
DEFAULT_NUM_USERS = 50
DEFAULT_NUM_ORDER_LINES = 400
DEFAULT_CATEGORIES = [
    "electronics", "clothing", "home", "sports", "toys",
    "books", "beauty", "garden",
]
DEFAULT_TAGS = [
    "premium", "budget", "eco-friendly", "durable", "portable",
    "compact", "classic", "modern",
]


def generate_fake_catalog(
    num_products: int = DEFAULT_NUM_PRODUCTS,
    categories: Optional[List[str]] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate a synthetic product catalog.

    Args:
        num_products: Number of products. Must be positive.
        categories: Categories to sample from.
        seed: Random seed for reproducible output.

    Returns:
        DataFrame with columns id, name, category, price, discount_percent
        and tags ("|"-separated). About a third of products are discounted.

    Raises:
        ValueError: If num_products is not positive.
    """
    if num_products <= 0:
        raise ValueError("num_products must be positive")

    rng = random.Random(seed)
    categories = categories or DEFAULT_CATEGORIES

    products = []
    for index in range(1, num_products + 1):
        category = rng.choice(categories)
        tags = rng.sample(DEFAULT_TAGS, rng.randint(1, 3))
        discount = rng.choice([5, 10, 15, 20, 30]) if rng.random() < 0.33 else None
        products.append({
            "id": f"p{index:04d}",
            "name": f"{tags[0].title()} {category} item {index}",
            "category": category,
            "price": round(rng.uniform(5, 500), 2),
            "discount_percent": discount,
            "tags": "|".join(tags),
        })

    return pd.DataFrame(products)


def generate_fake_orders(
    catalog: pd.DataFrame,
    num_users: int = DEFAULT_NUM_USERS,
    num_order_lines: int = DEFAULT_NUM_ORDER_LINES,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate order lines (user_id, product_id) against a catalog."""
    if num_users <= 0 or num_order_lines <= 0:
        raise ValueError("num_users and num_order_lines must be positive")

    rng = random.Random(seed)
    product_ids = catalog["id"].tolist()
    lines = [
        {
            "user_id": f"user-{rng.randint(1, num_users)}",
            "product_id": rng.choice(product_ids),
        }
        for _ in range(num_order_lines)
    ]
    return pd.DataFrame(lines)


def default_experiments() -> List[Dict]:
    return [
        {
            "id": "exp-checkout-button",
            "name": "checkout_button",
            "description": "Checkout button wording",
            "test_type": "content",
            "variants": [
                {"name": "control", "value": "Buy now"},
                {"name": "variant", "value": "Complete purchase"},
            ],
            "traffic_split": {"control": 50, "variant": 50},
        },
        {
            "id": "exp-hero-banner",
            "name": "hero_banner",
            "description": "Homepage hero banner layout",
            "test_type": "layout",
            "target_id": "homepage",
            "variants": [
                {"name": "control", "value": "video"},
                {"name": "variant", "value": "carousel"},
            ],
            "traffic_split": {"control": 70, "variant": 30},
        },
    ]


def main() -> None:
    """Generate all fake data files under data/."""
    print(f"Generating {DEFAULT_NUM_PRODUCTS} products and "
          f"{DEFAULT_NUM_ORDER_LINES} order lines...")

    catalog = generate_fake_catalog(seed=42)
    orders = generate_fake_orders(catalog, seed=42)

    data_dir = Path(__file__).parent.parent / "data"
    data_dir.mkdir(exist_ok=True)

    catalog.to_csv(data_dir / "catalog.csv", index=False)
    orders.to_csv(data_dir / "orders.csv", index=False)
    with open(data_dir / "experiments.json", "w", encoding="utf-8") as f:
        json.dump(default_experiments(), f, indent=2)

    print(f"\nData generated successfully in {data_dir}")
    print("\nCatalog by category:")
    print(catalog["category"].value_counts().to_string())
    print(f"\nUsers with orders: {orders['user_id'].nunique()}")


if __name__ == "__main__":
    main()

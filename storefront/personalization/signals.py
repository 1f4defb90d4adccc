"""Signal store for implicit browsing behaviour.

Records category page views, viewed items and search terms for a single
visitor and exposes them as a BrowsingProfile for scoring. Tracking is
best-effort: storage failures are logged and never reach the caller.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List

from storefront.personalization.storage import VisitorStorage, parse_json

# Configure module logger
logger = logging.getLogger(__name__)

# Persisted keys
CATEGORY_BROWSING_KEY = "categoryBrowsing"
RECENTLY_VIEWED_KEY = "recentlyViewed"
SEARCH_QUERIES_KEY = "searchQueries"

MAX_RECENT_ITEMS = 20
MAX_SEARCH_TERMS = 20
MIN_SEARCH_TERM_LENGTH = 2


@dataclass
class BrowsingProfile:
    """Implicit signals collected for one visitor."""

    category_counts: Dict[str, int] = field(default_factory=dict)
    recently_viewed: List[str] = field(default_factory=list)
    recent_search_terms: List[str] = field(default_factory=list)

    @property
    def has_history(self) -> bool:
        return bool(self.category_counts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            CATEGORY_BROWSING_KEY: dict(self.category_counts),
            RECENTLY_VIEWED_KEY: list(self.recently_viewed),
            SEARCH_QUERIES_KEY: list(self.recent_search_terms),
        }


def _as_counts(decoded: Any) -> Dict[str, int]:
    if not isinstance(decoded, dict):
        raise TypeError(f"expected object, got {type(decoded).__name__}")
    counts = {}
    for category, count in decoded.items():
        if isinstance(count, bool) or not isinstance(count, (int, float)):
            raise TypeError(f"count for {category!r} is not a number")
        if not math.isfinite(count):
            raise ValueError(f"non-finite count for {category!r}")
        if count < 0:
            raise ValueError(f"negative count for {category!r}")
        counts[str(category)] = int(count)
    return counts


def _as_string_list(decoded: Any) -> List[str]:
    if not isinstance(decoded, list):
        raise TypeError(f"expected array, got {type(decoded).__name__}")
    if not all(isinstance(entry, str) for entry in decoded):
        raise TypeError("array contains non-string entries")
    return decoded


def _push_front(entries: List[str], value: str, cap: int) -> List[str]:
    """Move value to the front of entries without duplicates, capped."""
    return ([value] + [entry for entry in entries if entry != value])[:cap]


class SignalStore:
    """Read-modify-write access to a visitor's BrowsingProfile."""

    def __init__(self, storage: VisitorStorage) -> None:
        self.storage = storage

    def _read_counts(self) -> Dict[str, int]:
        result = parse_json(self.storage.get(CATEGORY_BROWSING_KEY), _as_counts)
        return result.unwrap_or({})

    def _read_list(self, key: str) -> List[str]:
        result = parse_json(self.storage.get(key), _as_string_list)
        return result.unwrap_or([])

    def record_category_view(self, category_id: str) -> None:
        try:
            counts = self._read_counts()
            counts[category_id] = counts.get(category_id, 0) + 1
            self.storage.set(CATEGORY_BROWSING_KEY, json.dumps(counts))
        except Exception as e:
            logger.warning(
                "Failed to record category view",
                extra={"category": category_id, "error": str(e)},
            )

    def record_item_viewed(self, item_id: str) -> None:
        try:
            recent = _push_front(
                self._read_list(RECENTLY_VIEWED_KEY), item_id, MAX_RECENT_ITEMS
            )
            self.storage.set(RECENTLY_VIEWED_KEY, json.dumps(recent))
        except Exception as e:
            logger.warning(
                "Failed to record item view",
                extra={"item_id": item_id, "error": str(e)},
            )

    def record_search(self, term: str) -> None:
        if not term or len(term) < MIN_SEARCH_TERM_LENGTH:
            return
        try:
            terms = _push_front(
                self._read_list(SEARCH_QUERIES_KEY), term, MAX_SEARCH_TERMS
            )
            self.storage.set(SEARCH_QUERIES_KEY, json.dumps(terms))
        except Exception as e:
            logger.warning(
                "Failed to record search term",
                extra={"term": term, "error": str(e)},
            )

    def read_profile(self) -> BrowsingProfile:
        """Return the visitor's profile, with empty defaults for bad fields."""
        try:
            return BrowsingProfile(
                category_counts=self._read_counts(),
                recently_viewed=self._read_list(RECENTLY_VIEWED_KEY)[:MAX_RECENT_ITEMS],
                recent_search_terms=self._read_list(SEARCH_QUERIES_KEY)[:MAX_SEARCH_TERMS],
            )
        except Exception as e:
            logger.warning("Failed to read browsing profile", extra={"error": str(e)})
            return BrowsingProfile()

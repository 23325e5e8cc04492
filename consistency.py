"""
Denormalized rating upkeep and per-(tool, user) uniqueness.

A tool's `rating` and `reviewCount` are copies of what its reviews say; they
are recomputed from scratch after every review mutation, so a missed update
is repaired by the next one. Favorites and reviews rely on the unique
(toolId, userEmail) indexes from `Store.ensure_indexes`, and a rejected
insert is reported as a conflict.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Tuple

from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from database import Store
from errors import ConflictError
from schemas import parse_object_id, utcnow

logger = logging.getLogger(__name__)

TENTH = Decimal("0.1")


def round_rating(value) -> float:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return float(value.quantize(TENTH, rounding=ROUND_HALF_UP))


def average_rating(ratings: Iterable[int]) -> float:
    """Mean of the ratings, half-up to one decimal; 0 when there are none."""
    values = [int(r) for r in ratings]
    if not values:
        return 0
    return round_rating(Decimal(sum(values)) / Decimal(len(values)))


def refresh_tool_rating(store: Store, tool_id: str) -> Tuple[float, int]:
    ratings = [r["rating"] for r in store.reviews.find({"toolId": tool_id}, {"rating": 1})]
    rating = average_rating(ratings)
    count = len(ratings)
    store.tools.update_one(
        {"_id": parse_object_id(tool_id, "tool")},
        {"$set": {"rating": rating, "reviewCount": count, "updatedAt": utcnow()}},
    )
    logger.debug("Tool %s rating=%s reviewCount=%s", tool_id, rating, count)
    return rating, count


def insert_once(collection: Collection, document: Dict[str, Any], message: str) -> Any:
    try:
        return collection.insert_one(document).inserted_id
    except DuplicateKeyError:
        raise ConflictError(message)

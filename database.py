"""
MongoDB access for KlickTools.

A `Store` owns one client and exposes the four collections. The process
entry point creates it (see `lifespan` in main.py) and handlers receive it
through the `get_store` dependency.
"""

import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv
from fastapi import Request
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import OperationFailure

from errors import UnexpectedError

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "klicktools")

USERS = "users"
TOOLS = "tools"
REVIEWS = "reviews"
FAVORITES = "favorites"


class Store:
    def __init__(self, client: MongoClient, name: str = DATABASE_NAME):
        self.client = client
        self.db = client[name]

    @property
    def name(self) -> str:
        return self.db.name

    @property
    def users(self) -> Collection:
        return self.db[USERS]

    @property
    def tools(self) -> Collection:
        return self.db[TOOLS]

    @property
    def reviews(self) -> Collection:
        return self.db[REVIEWS]

    @property
    def favorites(self) -> Collection:
        return self.db[FAVORITES]

    def get_documents(
        self,
        collection_name: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def ensure_indexes(self) -> None:
        self.users.create_index([("email", ASCENDING)], unique=True)
        self.tools.create_index([("name", ASCENDING)])
        self.tools.create_index([("category", ASCENDING)])
        self.tools.create_index([("tags", ASCENDING)])
        for collection in (self.reviews, self.favorites):
            # at most one review and one favorite per (toolId, userEmail)
            self._ensure_unique_pairs(collection)
            collection.create_index([("userEmail", ASCENDING)])
        logger.info("Indexes ensured on database %s", self.name)

    def _ensure_unique_pairs(self, collection: Collection) -> None:
        try:
            collection.create_index([("toolId", ASCENDING), ("userEmail", ASCENDING)], unique=True)
        except OperationFailure:
            duplicates = duplicate_pairs(collection)
            logger.error(
                "Unique (toolId, userEmail) index not created on %s; %d duplicated pairs must be removed first: %s",
                collection.name,
                len(duplicates),
                duplicates[:10],
            )

    def close(self) -> None:
        self.client.close()
        logger.info("Closed connection to database %s", self.name)


def duplicate_pairs(collection: Collection) -> List[Dict[str, Any]]:
    """(toolId, userEmail) pairs stored more than once, with their counts."""
    pipeline = [
        {"$group": {"_id": {"toolId": "$toolId", "userEmail": "$userEmail"}, "count": {"$sum": 1}}},
        {"$match": {"count": {"$gt": 1}}},
        {"$sort": {"count": -1}},
    ]
    return [dict(row["_id"], count=row["count"]) for row in collection.aggregate(pipeline)]


def connect(url: Optional[str] = DATABASE_URL, name: str = DATABASE_NAME) -> Optional[Store]:
    if not url:
        logger.warning("DATABASE_URL is not set; running without a database")
        return None
    store = Store(MongoClient(url), name)
    logger.info("Connected to database %s", name)
    return store


def get_store(request: Request) -> Store:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise UnexpectedError("Database not configured")
    return store

import logging
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field

from auth import hash_password, require_admin
from consistency import insert_once, refresh_tool_rating, round_rating
from database import FAVORITES, REVIEWS, TOOLS, Store, get_store
from errors import ConflictError, NotFoundError, ValidationError
from schemas import (
    ROLES,
    Role,
    ToolFields,
    ToolStatus,
    new_tool,
    new_user,
    parse_object_id,
    serialize,
    utcnow,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# Request Models
class ToolUpdate(ToolFields):
    status: Optional[ToolStatus] = None


class RoleChangeRequest(BaseModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    role: str = Field(..., min_length=1)


class UserRef(BaseModel):
    user_id: str = Field(..., alias="userId", min_length=1)


class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(..., min_length=1)
    role: Role = "user"


class UpdatePasswordRequest(BaseModel):
    email: EmailStr
    new_password: str = Field(..., alias="newPassword", min_length=1)


# Helpers

def name_taken(store: Store, name: str, exclude: Optional[ObjectId] = None) -> bool:
    query: Dict[str, Any] = {"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    return store.tools.find_one(query) is not None


def insert_tool(store: Store, fields: ToolFields, creator: Dict[str, Any]) -> Dict[str, Any]:
    if name_taken(store, fields.name):
        raise ConflictError("A tool with this name already exists")
    tool = new_tool(fields, created_by=creator["_id"])
    store.tools.insert_one(tool)
    logger.info("Tool %r created by %s", tool["name"], creator["email"])
    return tool


def _shift_month(year: int, month: int, delta: int):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _group_counts(store: Store, field: str, label: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    pipeline: List[Dict[str, Any]] = [
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ]
    if limit:
        pipeline.append({"$limit": limit})
    return [{label: row["_id"], "count": row["count"]} for row in store.tools.aggregate(pipeline)]


# Tool management
@router.post("/tools", status_code=201)
def create_tool(payload: ToolFields, admin=Depends(require_admin), store: Store = Depends(get_store)):
    tool = insert_tool(store, payload, admin)
    return {"message": "Tool created successfully", "tool": serialize(tool)}


@router.get("/tools")
def list_tools(admin=Depends(require_admin), store: Store = Depends(get_store)):
    tools = store.get_documents(TOOLS, limit=50, sort=[("createdAt", -1)])
    return [serialize(t) for t in tools]


@router.put("/tools/{tool_id}")
def update_tool(tool_id: str, payload: ToolUpdate, admin=Depends(require_admin), store: Store = Depends(get_store)):
    oid = parse_object_id(tool_id, "tool")
    if not store.tools.find_one({"_id": oid}):
        raise NotFoundError("Tool not found")
    if name_taken(store, payload.name, exclude=oid):
        raise ConflictError("A tool with this name already exists")
    update = payload.model_dump(by_alias=True, exclude={"status"} if payload.status is None else None)
    update["updatedAt"] = utcnow()
    store.tools.update_one({"_id": oid}, {"$set": update})
    logger.info("Tool %s updated by %s", tool_id, admin["email"])
    return {"message": "Tool updated successfully", "tool": serialize(store.tools.find_one({"_id": oid}))}


@router.delete("/tools/{tool_id}")
def delete_tool(tool_id: str, admin=Depends(require_admin), store: Store = Depends(get_store)):
    oid = parse_object_id(tool_id, "tool")
    result = store.tools.delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise NotFoundError("Tool not found")
    # reviews and favorites of a deleted tool have nothing left to point at
    reviews = store.reviews.delete_many({"toolId": str(oid)}).deleted_count
    favorites = store.favorites.delete_many({"toolId": str(oid)}).deleted_count
    logger.info("Tool %s deleted by %s (%d reviews, %d favorites)", tool_id, admin["email"], reviews, favorites)
    return {"message": "Tool deleted successfully", "deletedReviews": reviews, "deletedFavorites": favorites}


# Dashboard
@router.get("/stats")
def stats(admin=Depends(require_admin), store: Store = Depends(get_store)):
    tools, users = store.tools, store.users
    now = utcnow()

    monthly_growth = []
    for i in range(5, -1, -1):
        year, month = _shift_month(now.year, now.month, -i)
        next_year, next_month = _shift_month(year, month, 1)
        # naive UTC bounds, matching what the driver stores
        start, end = datetime(year, month, 1), datetime(next_year, next_month, 1)
        window = {"createdAt": {"$gte": start, "$lt": end}}
        monthly_growth.append({
            "month": start.strftime("%b %Y"),
            "tools": tools.count_documents(window),
            "users": users.count_documents(window),
        })

    avg = list(tools.aggregate([{"$group": {"_id": None, "avgRating": {"$avg": "$rating"}}}]))
    average = round_rating(avg[0]["avgRating"]) if avg and avg[0].get("avgRating") is not None else 0

    return {
        "totalTools": tools.count_documents({}),
        "totalUsers": users.count_documents({}),
        "totalReviews": store.reviews.count_documents({}),
        "totalFavorites": store.favorites.count_documents({}),
        "recentTools": [serialize(t) for t in store.get_documents(TOOLS, limit=10, sort=[("createdAt", -1)])],
        "topCategories": _group_counts(store, "category", "category", limit=10),
        "toolsByPricing": _group_counts(store, "pricing", "pricing"),
        "monthlyGrowth": monthly_growth,
        "toolsByStatus": _group_counts(store, "status", "status"),
        "averageRating": average,
        "featuredToolsCount": tools.count_documents({"featured": True}),
        "apiToolsCount": tools.count_documents({"apiAvailable": True}),
        "lastUpdated": now.isoformat(),
    }


# User management
@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    role: Optional[Role] = None,
    admin=Depends(require_admin),
    store: Store = Depends(get_store),
):
    query: Dict[str, Any] = {}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"email": {"$regex": pattern, "$options": "i"}},
        ]
    if role:
        query["role"] = role

    cursor = store.users.find(query).sort("createdAt", -1).skip((page - 1) * limit).limit(limit)
    users = [serialize(u) for u in cursor]
    total = store.users.count_documents(query)

    by_role = {row["_id"]: row["count"] for row in store.users.aggregate([
        {"$group": {"_id": "$role", "count": {"$sum": 1}}},
    ])}

    return {
        "users": users,
        "pagination": {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit)},
        "stats": {"total": total, "admins": by_role.get("admin", 0), "users": by_role.get("user", 0)},
    }


@router.put("/users")
def change_role(payload: RoleChangeRequest, admin=Depends(require_admin), store: Store = Depends(get_store)):
    oid = parse_object_id(payload.user_id, "user")
    if oid == admin["_id"]:
        raise ValidationError("Cannot change your own role")
    if payload.role not in ROLES:
        raise ValidationError("Invalid role")
    result = store.users.update_one({"_id": oid}, {"$set": {"role": payload.role, "updatedAt": utcnow()}})
    if result.matched_count == 0:
        raise NotFoundError("User not found")
    logger.info("User %s set to role %s by %s", payload.user_id, payload.role, admin["email"])
    return {"message": "User role updated successfully", "role": payload.role}


@router.delete("/users")
def delete_user(payload: UserRef, admin=Depends(require_admin), store: Store = Depends(get_store)):
    oid = parse_object_id(payload.user_id, "user")
    if oid == admin["_id"]:
        raise ValidationError("Cannot delete your own account")
    target = store.users.find_one({"_id": oid})
    if not target:
        raise NotFoundError("User not found")
    if target.get("role") == "admin":
        raise ValidationError("Cannot delete another admin")
    store.users.delete_one({"_id": oid})
    logger.info("User %s deleted by %s", target.get("email"), admin["email"])
    return {"message": "User deleted successfully"}


@router.post("/create-user", status_code=201)
def create_user(payload: CreateUserRequest, admin=Depends(require_admin), store: Store = Depends(get_store)):
    email = payload.email.lower()
    if store.users.find_one({"email": email}):
        raise ConflictError("User with this email already exists")
    user = new_user(email=email, name=payload.name, password_hash=hash_password(payload.password), role=payload.role)
    insert_once(store.users, user, "User with this email already exists")
    logger.info("User %s (%s) provisioned by %s", email, payload.role, admin["email"])
    return {"message": "User created successfully", "user": serialize(user)}


@router.post("/update-password")
def update_password(payload: UpdatePasswordRequest, admin=Depends(require_admin), store: Store = Depends(get_store)):
    email = payload.email.lower()
    result = store.users.update_one(
        {"email": email},
        {"$set": {"passwordHash": hash_password(payload.new_password), "updatedAt": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("User not found")
    logger.info("Password reset for %s by %s", email, admin["email"])
    return {"message": "Password updated successfully", "email": email}


# Moderation
@router.get("/all-favorites")
def all_favorites(admin=Depends(require_admin), store: Store = Depends(get_store)):
    return [serialize(f) for f in store.get_documents(FAVORITES, sort=[("createdAt", -1)])]


@router.get("/all-reviews")
def all_reviews(admin=Depends(require_admin), store: Store = Depends(get_store)):
    return [serialize(r) for r in store.get_documents(REVIEWS, sort=[("createdAt", -1)])]


@router.delete("/favorites/{favorite_id}")
def delete_favorite(favorite_id: str, admin=Depends(require_admin), store: Store = Depends(get_store)):
    oid = parse_object_id(favorite_id, "favorite")
    if store.favorites.delete_one({"_id": oid}).deleted_count == 0:
        raise NotFoundError("Favorite not found")
    return {"message": "Favorite deleted successfully"}


@router.delete("/reviews/{review_id}")
def delete_review(review_id: str, admin=Depends(require_admin), store: Store = Depends(get_store)):
    oid = parse_object_id(review_id, "review")
    review = store.reviews.find_one_and_delete({"_id": oid})
    if not review:
        raise NotFoundError("Review not found")
    rating, count = refresh_tool_rating(store, review["toolId"])
    logger.info("Review %s removed by %s", review_id, admin["email"])
    return {"message": "Review deleted successfully", "rating": rating, "reviewCount": count}

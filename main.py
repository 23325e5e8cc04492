import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field

import database
from admin import insert_tool, router as admin_router
from auth import get_current_user, hash_password, require_admin, token_for, verify_password
from consistency import insert_once, refresh_tool_rating
from database import FAVORITES, REVIEWS, TOOLS, Store, get_store
from errors import AuthenticationError, ConflictError, NotFoundError, install_error_handlers
from schemas import Favorite, Review, ToolFields, new_user, parse_object_id, serialize, utcnow

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = database.connect(database.DATABASE_URL, database.DATABASE_NAME)
    if store is not None:
        store.ensure_indexes()
    app.state.store = store
    try:
        yield
    finally:
        if store is not None:
            store.close()


# App and CORS
app = FastAPI(title="KlickTools API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)
app.include_router(admin_router)


# Request Models
class RegisterRequest(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=120)
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ToolRef(BaseModel):
    tool_id: str = Field(..., alias="toolId", min_length=1)


class ReviewRequest(BaseModel):
    tool_id: str = Field(..., alias="toolId", min_length=1)
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = ""


SORTS = {
    "newest": [("createdAt", -1)],
    "rating": [("rating", -1)],
    "name": [("name", 1)],
    "popularity": [("featured", -1), ("rating", -1), ("reviewCount", -1)],
}


# Helpers

def find_tool(store: Store, tool_id: str) -> Dict[str, Any]:
    tool = store.tools.find_one({"_id": parse_object_id(tool_id, "tool")})
    if not tool:
        raise NotFoundError("Tool not found")
    return tool


def tool_key(tool_id: str) -> str:
    """Canonical toolId as stored on reviews and favorites."""
    return str(parse_object_id(tool_id, "tool"))


# Utility endpoints
@app.get("/")
def root():
    return {"message": "KlickTools API running"}


@app.get("/test")
def test_database():
    store = getattr(app.state, "store", None)
    response = {
        "backend": "ok",
        "database": "missing",
        "database_url": "set" if database.DATABASE_URL else "not set",
        "database_name": database.DATABASE_NAME,
        "collections": [],
    }
    if store is None:
        return response
    try:
        response["collections"] = store.db.list_collection_names()
        response["database"] = "ok"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"error: {str(e)[:80]}"
    return response


# Auth Routes
@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, store: Store = Depends(get_store)):
    email = payload.email.lower()
    if store.users.find_one({"email": email}):
        raise ConflictError("User already exists")
    user = new_user(email=email, name=payload.name, password_hash=hash_password(payload.password))
    insert_once(store.users, user, "User already exists")
    logger.info("Registered %s", email)
    return {"message": "User created successfully", "user": serialize(user)}


@app.post("/auth/login")
def login(payload: LoginRequest, store: Store = Depends(get_store)):
    user = store.users.find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("passwordHash")):
        logger.info("Failed login for %s", payload.email)
        raise AuthenticationError("Invalid email or password")
    now = utcnow()
    store.users.update_one({"_id": user["_id"]}, {"$set": {"lastLogin": now, "updatedAt": now}})
    user.update(lastLogin=now, updatedAt=now)
    return {"message": "Login successful", "token": token_for(user), "token_type": "bearer", "user": serialize(user)}


@app.get("/me")
def me(current_user=Depends(get_current_user)):
    return serialize(current_user)


# Catalog
@app.get("/tools")
def list_tools(
    q: Optional[str] = None,
    category: Optional[str] = None,
    pricing: Optional[str] = None,
    rating: Optional[float] = Query(None, ge=0, le=5),
    status: Optional[str] = None,
    api_available: Optional[bool] = Query(None, alias="apiAvailable"),
    featured: Optional[bool] = None,
    sort: str = "popularity",
    store: Store = Depends(get_store),
):
    query: Dict[str, Any] = {}
    if featured:
        query["featured"] = True
    if category:
        query["category"] = category
    if pricing:
        query["pricing"] = pricing
    if rating is not None:
        query["rating"] = {"$gte": int(rating)}
    if status:
        query["status"] = status
    if api_available:
        query["apiAvailable"] = True
    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {field: {"$regex": pattern, "$options": "i"}}
            for field in ("name", "description", "category", "tags")
        ]
    tools = store.get_documents(TOOLS, query, sort=SORTS.get(sort, SORTS["popularity"]))
    logger.debug("Tool search %s matched %d", query, len(tools))
    return [serialize(t) for t in tools]


@app.post("/tools", status_code=201)
def create_tool(payload: ToolFields, admin=Depends(require_admin), store: Store = Depends(get_store)):
    tool = insert_tool(store, payload, admin)
    return {"message": "Tool created successfully", "toolId": str(tool["_id"]), "tool": serialize(tool)}


@app.get("/categories")
def list_categories(store: Store = Depends(get_store)):
    pipeline = [
        {"$group": {"_id": "$category", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
    ]
    categories = [{"category": row["_id"], "count": row["count"]} for row in store.tools.aggregate(pipeline)]
    return [{"category": "All Tools", "count": store.tools.count_documents({})}] + categories


# Favorites
@app.post("/favorites")
def add_favorite(payload: ToolRef, current_user=Depends(get_current_user), store: Store = Depends(get_store)):
    tool = find_tool(store, payload.tool_id)
    favorite = Favorite(
        tool_id=str(tool["_id"]),
        user_email=current_user["email"],
        tool_name=tool["name"],
        category=tool.get("category", ""),
    ).model_dump(by_alias=True)
    insert_once(store.favorites, favorite, "Tool already favorited")
    return {"message": "Added to favorites", "favorite": serialize(favorite)}


@app.delete("/favorites")
def remove_favorite(payload: ToolRef, current_user=Depends(get_current_user), store: Store = Depends(get_store)):
    result = store.favorites.delete_one({"toolId": tool_key(payload.tool_id), "userEmail": current_user["email"]})
    if result.deleted_count == 0:
        raise NotFoundError("Favorite not found")
    return {"message": "Removed from favorites"}


@app.get("/favorites")
def get_favorites(
    tool_id: Optional[str] = Query(None, alias="toolId"),
    current_user=Depends(get_current_user),
    store: Store = Depends(get_store),
):
    if tool_id:
        favorite = store.favorites.find_one({"toolId": tool_key(tool_id), "userEmail": current_user["email"]})
        return {"isFavorited": favorite is not None}
    favorites = store.get_documents(FAVORITES, {"userEmail": current_user["email"]}, sort=[("createdAt", -1)])
    return [serialize(f) for f in favorites]


# Reviews
@app.post("/reviews")
def add_review(payload: ReviewRequest, current_user=Depends(get_current_user), store: Store = Depends(get_store)):
    tool = find_tool(store, payload.tool_id)
    tool_id = str(tool["_id"])
    review = Review(
        tool_id=tool_id,
        user_id=str(current_user["_id"]),
        user_email=current_user["email"],
        rating=payload.rating,
        comment=payload.comment or "",
        tool_name=tool["name"],
    ).model_dump(by_alias=True)
    insert_once(store.reviews, review, "You have already reviewed this tool, update your review instead")
    rating, count = refresh_tool_rating(store, tool_id)
    return {"message": "Review added successfully", "review": serialize(review), "rating": rating, "reviewCount": count}


@app.put("/reviews")
def update_review(payload: ReviewRequest, current_user=Depends(get_current_user), store: Store = Depends(get_store)):
    tool_id = tool_key(payload.tool_id)
    result = store.reviews.update_one(
        {"toolId": tool_id, "userEmail": current_user["email"]},
        {"$set": {"rating": payload.rating, "comment": payload.comment or "", "updatedAt": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Review not found")
    rating, count = refresh_tool_rating(store, tool_id)
    return {"message": "Review updated successfully", "rating": rating, "reviewCount": count}


@app.delete("/reviews")
def delete_review(payload: ToolRef, current_user=Depends(get_current_user), store: Store = Depends(get_store)):
    tool_id = tool_key(payload.tool_id)
    result = store.reviews.delete_one({"toolId": tool_id, "userEmail": current_user["email"]})
    if result.deleted_count == 0:
        raise NotFoundError("Review not found")
    rating, count = refresh_tool_rating(store, tool_id)
    return {"message": "Review deleted successfully", "rating": rating, "reviewCount": count}


@app.get("/reviews")
def list_reviews(
    tool_id: str = Query(..., alias="toolId", min_length=1),
    user_email: Optional[str] = Query(None, alias="userEmail"),
    store: Store = Depends(get_store),
):
    query = {"toolId": tool_key(tool_id)}
    if user_email:
        query["userEmail"] = user_email.strip().lower()
    return [serialize(r) for r in store.get_documents(REVIEWS, query, sort=[("createdAt", -1)])]


# Per-user listings
@app.get("/user/favorites")
def my_favorites(current_user=Depends(get_current_user), store: Store = Depends(get_store)):
    favorites = store.get_documents(FAVORITES, {"userEmail": current_user["email"]}, sort=[("createdAt", -1)])
    return [serialize(f) for f in favorites]


@app.get("/user/reviews")
def my_reviews(current_user=Depends(get_current_user), store: Store = Depends(get_store)):
    reviews = store.get_documents(REVIEWS, {"userEmail": current_user["email"]}, sort=[("createdAt", -1)])
    return [serialize(r) for r in reviews]


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

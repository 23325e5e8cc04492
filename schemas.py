"""
Database Schemas for KlickTools

MongoDB collections are described below with Pydantic models. Documents are
stored with camelCase keys (toolId, reviewCount, createdAt...), which the
models produce through their alias generator.

Collections:
- users: accounts (role "user" or "admin")
- tools: the AI tool catalog
- reviews: one rating per (tool, user)
- favorites: one bookmark per (tool, user)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from errors import ValidationError

Role = Literal["user", "admin"]
Pricing = Literal["Free", "Freemium", "Paid", "Enterprise"]
ToolStatus = Literal["active", "pending", "inactive", "beta", "deprecated"]

ROLES = ("user", "admin")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        str_strip_whitespace=True,
    )


class User(Document):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=120)
    password_hash: Optional[str] = Field(None, description="BCrypt hash, absent for OAuth-only accounts")
    role: Role = "user"
    image: Optional[str] = None
    favorites: List[str] = Field(default_factory=list)
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ToolFields(Document):
    """Caller-editable part of a tool."""
    name: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    subcategory: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    image: Optional[str] = None
    logo: Optional[str] = None
    color: Optional[str] = None
    featured: bool = False
    pricing: Pricing = "Freemium"
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    website: Optional[str] = None
    documentation: Optional[str] = None
    api_available: bool = False
    api_url: Optional[str] = None
    launch_date: Optional[datetime] = None


class Tool(ToolFields):
    rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    views: int = Field(0, ge=0)
    clicks: int = Field(0, ge=0)
    status: ToolStatus = "pending"
    created_by: Optional[ObjectId] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Review(Document):
    tool_id: str = Field(..., description="Hex string of the tool _id")
    user_id: str
    user_email: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    tool_name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Favorite(Document):
    tool_id: str = Field(..., description="Hex string of the tool _id")
    user_email: str
    tool_name: str
    category: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# Record constructors

def new_user(
    email: str,
    name: str,
    password_hash: Optional[str] = None,
    role: str = "user",
    image: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    user = User(
        email=email.strip().lower(),
        name=name,
        password_hash=password_hash,
        role=role,
        image=image,
        created_at=now,
        updated_at=now,
    )
    return user.model_dump(by_alias=True, exclude_none=True)


def new_tool(
    fields: Union[ToolFields, Dict[str, Any]],
    created_by: Optional[ObjectId] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build a tool document ready for insertion.

    Counters and the derived rating start at zero and every new tool starts
    out "pending" whatever the caller asked for.
    """
    if not isinstance(fields, ToolFields):
        fields = ToolFields(**fields)
    now = now or utcnow()
    tool = Tool(
        **fields.model_dump(),
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    return tool.model_dump(by_alias=True, exclude_none=True)


# Helpers

def parse_object_id(value: Any, label: str = "") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {label + ' ' if label else ''}ID format")
    return ObjectId(value)


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Make a stored document JSON-safe; never exposes the password hash."""
    if not doc:
        return doc
    d = {k: v for k, v in doc.items() if k != "passwordHash"}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return _plain(d)

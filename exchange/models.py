from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, field_validator


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Category(str, Enum):
    MEN = "men"
    WOMEN = "women"
    KIDS = "kids"


class ItemType(str, Enum):
    SHIRT = "shirt"
    PANTS = "pants"
    DRESS = "dress"
    JACKET = "jacket"
    SHOES = "shoes"
    ACCESSORIES = "accessories"


class Size(str, Enum):
    XS = "XS"
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"
    XXL = "XXL"


class Condition(str, Enum):
    NEW = "new"
    LIKE_NEW = "like-new"
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"


class ItemStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SWAPPED = "swapped"


class RequestKind(str, Enum):
    SWAP = "swap"
    POINTS = "points"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TransactionType(str, Enum):
    EARNED = "earned"
    SPENT = "spent"
    DEBIT = "debit"
    CREDIT = "credit"
    BONUS = "bonus"


class RequestDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    ALL = "all"


def normalize_choice(value, enum_cls):
    """Map loosely formatted input ("Like New", " men ", "xl") onto an enum value."""
    if value is None or isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return value
    text = value.strip()
    for member in enum_cls:
        if text == member.value:
            return member
    key = text.lower().replace("_", "-").replace(" ", "-")
    for member in enum_cls:
        if key == member.value.lower():
            return member
    return text


# ---------- Records ----------

class User(BaseModel):
    id: UUID
    email: str
    password_hash: str
    first_name: str
    last_name: str
    role: UserRole = UserRole.USER
    points: int = Field(ge=0)
    profile_image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserProfile(BaseModel):
    """User as shown to API clients, without the credential hash."""
    id: UUID
    email: str
    first_name: str
    last_name: str
    role: UserRole
    points: int
    profile_image_url: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OwnerSummary(BaseModel):
    id: UUID
    first_name: str
    last_name: str
    profile_image_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Item(BaseModel):
    id: UUID
    title: str
    description: str
    category: Category
    type: ItemType
    size: Size
    condition: Condition
    tags: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    points: int = Field(gt=0)
    status: ItemStatus = ItemStatus.PENDING
    owner_id: UUID
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_requestable(self) -> bool:
        return self.status == ItemStatus.APPROVED


class ItemWithOwner(Item):
    owner: OwnerSummary


class ExchangeRequest(BaseModel):
    id: UUID
    item_id: UUID
    requester_id: UUID
    owner_id: UUID
    kind: RequestKind
    offered_item_id: Optional[UUID] = None
    offered_points: Optional[int] = None
    status: RequestStatus = RequestStatus.PENDING
    rejection_reason: Optional[str] = None
    created_at: datetime
    settled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class PointTransaction(BaseModel):
    id: UUID
    user_id: UUID
    amount: int
    type: TransactionType
    description: str
    related_request_id: Optional[UUID] = None
    balance_after: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Caller(BaseModel):
    user_id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# ---------- Payloads ----------

class RegisterUserRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password_hash: str = Field(..., min_length=1, description="Credential hash produced by the auth layer")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    profile_image_url: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v


class SetRoleRequest(BaseModel):
    role: UserRole


class CreateItemRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    category: Category
    type: ItemType
    size: Size
    condition: Condition
    tags: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    points: Optional[int] = Field(default=None, gt=0)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "title": "Vintage denim jacket",
            "description": "Light wash, barely worn",
            "category": "women",
            "type": "jacket",
            "size": "M",
            "condition": "like-new",
            "tags": ["denim", "vintage"],
            "images": ["/uploads/denim-1.jpg"],
            "points": 40
        }
    })

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v):
        return normalize_choice(v, Category)

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v):
        return normalize_choice(v, ItemType)

    @field_validator("size", mode="before")
    @classmethod
    def coerce_size(cls, v):
        return normalize_choice(v, Size)

    @field_validator("condition", mode="before")
    @classmethod
    def coerce_condition(cls, v):
        return normalize_choice(v, Condition)

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, v):
        if isinstance(v, str):
            v = v.split(",")
        seen: list[str] = []
        for tag in v or []:
            tag = str(tag).strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen


class CreateExchangeRequest(BaseModel):
    item_id: UUID
    kind: RequestKind
    offered_item_id: Optional[UUID] = None
    offered_points: Optional[int] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "item_id": "770e8400-e29b-41d4-a716-446655440002",
            "kind": "points",
            "offered_points": 40
        }
    })


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class SetItemStatusRequest(BaseModel):
    status: ItemStatus


class CatalogFilter(BaseModel):
    category: Optional[Category] = None
    type: Optional[ItemType] = None
    size: Optional[Size] = None
    condition: Optional[Condition] = None
    search: Optional[str] = None
    owner_id: Optional[UUID] = None
    status: Optional[ItemStatus] = ItemStatus.APPROVED
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v):
        return normalize_choice(v, Category)

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v):
        return normalize_choice(v, ItemType)

    @field_validator("size", mode="before")
    @classmethod
    def coerce_size(cls, v):
        return normalize_choice(v, Size)

    @field_validator("condition", mode="before")
    @classmethod
    def coerce_condition(cls, v):
        return normalize_choice(v, Condition)

    @field_validator("search")
    @classmethod
    def blank_search_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()


# ---------- Responses ----------

class UserBalance(BaseModel):
    user_id: UUID
    current_balance: int
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[PointTransaction]
    total_count: int
    current_balance: int


class SettlementResult(BaseModel):
    request: ExchangeRequest
    transferred_item_ids: list[UUID]
    transactions: list[PointTransaction] = Field(default_factory=list)
    superseded_request_ids: list[UUID] = Field(default_factory=list)
    message: str


class PlatformStats(BaseModel):
    total_users: int
    total_items: int
    items_by_status: dict[str, int]
    total_requests: int
    requests_by_status: dict[str, int]
    points_in_circulation: int


class NaturalSearchRequest(BaseModel):
    query: str = Field(..., min_length=1)


class NaturalSearchResponse(BaseModel):
    filters: CatalogFilter
    items: list[ItemWithOwner]

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, EmailStr, Field, field_validator

from giftregistry.core.notifications import NotificationType
from giftregistry.models.models import RegistryStatusEnum


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def _strip_required(value: str | None, label: str, min_length: int = 1) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if len(normalized) < min_length:
        raise ValueError(f"{label} must have at least {min_length} non-blank characters")
    return normalized


def _normalize_currency(value: str | None) -> str | None:
    if value is None:
        return None
    code = value.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValueError("Currency must be a 3-letter ISO code")
    return code


class RegistryBase(BaseModel):
    title: str = Field(min_length=2, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    occasion: str | None = Field(default=None, max_length=80)
    event_date: datetime | None = None
    is_private: bool = False
    show_contributor_names: bool = True
    allow_anonymous: bool = True
    currency: str | None = None

    @field_validator("title")
    @classmethod
    def _title_strip(cls, value: str) -> str:
        return _strip_required(value, "Title", 2)

    @field_validator("description", "occasion")
    @classmethod
    def _optional_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str | None) -> str | None:
        return _normalize_currency(value)


class RegistryCreate(RegistryBase):
    pass


class RegistryUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=2, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    occasion: str | None = Field(default=None, max_length=80)
    event_date: datetime | None = None
    is_private: bool | None = None
    show_contributor_names: bool | None = None
    allow_anonymous: bool | None = None
    currency: str | None = None
    status: RegistryStatusEnum | None = None

    @field_validator("title")
    @classmethod
    def _title_strip(cls, value: str | None) -> str | None:
        return _strip_required(value, "Title", 2)

    @field_validator("description", "occasion")
    @classmethod
    def _optional_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)

    @field_validator("currency")
    @classmethod
    def _currency(cls, value: str | None) -> str | None:
        return _normalize_currency(value)


class ItemCounts(BaseModel):
    total: int
    purchased: int
    funded: int
    partially_funded: int


class ItemFundingPublic(BaseModel):
    item_id: int | None
    contributed: float
    target: float
    remaining: float
    percent_funded: float
    is_fully_funded: bool
    contribution_count: int


class FundingSummary(BaseModel):
    total_amount: float
    total_target: float
    percent_funded: float
    contribution_count: int
    unique_contributors: int
    average_contribution: float
    items: ItemCounts


class GiftItemBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    url: str | None = Field(default=None, max_length=2048)
    image_url: str | None = Field(default=None, max_length=2048)
    is_purchased: bool = False

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str) -> str:
        return _strip_required(value, "Name")

    @field_validator("description", "url", "image_url")
    @classmethod
    def _optional_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class GiftItemCreate(GiftItemBase):
    registry_id: int


class GiftItemUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    price: float | None = Field(default=None, ge=0)
    quantity: int | None = Field(default=None, ge=1)
    url: str | None = Field(default=None, max_length=2048)
    image_url: str | None = Field(default=None, max_length=2048)
    is_purchased: bool | None = None

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str | None) -> str | None:
        return _strip_required(value, "Name")

    @field_validator("description", "url", "image_url")
    @classmethod
    def _optional_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class GiftItemPublic(BaseModel):
    id: int
    registry_id: int
    user_id: int | None
    name: str
    description: str | None
    price: float
    quantity: int
    url: str | None
    image_url: str | None
    is_purchased: bool
    is_favorite: bool = False
    created_at: datetime
    updated_at: datetime | None = None
    contributed: float
    target: float
    remaining: float
    percent_funded: float
    is_fully_funded: bool
    contribution_count: int
    is_reserved: bool = False
    reserved_by: int | None = None
    reservation_expires_at: datetime | None = None


class ContributionCreate(BaseModel):
    gift_item_id: int
    registry_id: int
    amount: float = Field(gt=0)
    message: str | None = Field(default=None, max_length=1000)
    contributor_name: str | None = Field(default=None, max_length=160)
    is_anonymous: bool = False


class ContributionPublic(BaseModel):
    id: int
    gift_item_id: int
    registry_id: int
    user_id: int | None
    contributor_name: str
    is_anonymous: bool
    amount: float
    message: str | None
    status: str
    created_at: datetime


class PaymentIntentCreate(ContributionCreate):
    pass


class PaymentIntentPublic(BaseModel):
    client_secret: str | None
    payment_intent_id: str
    amount: float
    currency: str


class RegistryPublic(BaseModel):
    id: int
    user_id: int
    title: str
    description: str | None
    occasion: str | None
    event_date: datetime | None
    is_private: bool
    show_contributor_names: bool
    allow_anonymous: bool
    currency: str
    status: str
    created_at: datetime
    updated_at: datetime | None = None
    role: str
    funding: FundingSummary
    gift_items: list[GiftItemPublic] = []
    recent_contributions: list[ContributionPublic] = []


class CoOwnerCreate(BaseModel):
    email: EmailStr
    can_edit: bool = True
    can_delete: bool = False


class CoOwnerUpdate(BaseModel):
    can_edit: bool | None = None
    can_delete: bool | None = None


class CoOwnerPublic(BaseModel):
    profile_id: int
    email: str
    name: str
    can_edit: bool
    can_delete: bool
    created_at: datetime


class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)

    @field_validator("content")
    @classmethod
    def _content_strip(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Comment cannot be empty")
        return normalized


class CommentPublic(BaseModel):
    id: int
    registry_id: int
    user_id: int
    author_name: str
    content: str
    created_at: datetime


class FavoriteToggle(BaseModel):
    gift_item_id: int
    is_favorite: bool


class NotifyRequest(BaseModel):
    registry_id: int
    type: NotificationType = NotificationType.REGISTRY_UPDATE
    gift_item_id: int | None = None
    contribution_id: int | None = None
    contributor_name: str | None = Field(default=None, max_length=160)
    amount: float | None = Field(default=None, gt=0)
    message: str | None = Field(default=None, max_length=1000)


class NotifyResponse(BaseModel):
    sent: bool
    notification_id: int | None = None
    emailed: bool = False
    message: str | None = None


class NotificationPublic(BaseModel):
    id: int
    type: str
    registry_id: int | None
    gift_item_id: int | None
    contribution_id: int | None
    contributor_name: str | None
    amount: float | None
    message: str | None
    read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationList(BaseModel):
    items: list[NotificationPublic]
    unread_count: int


class TopContributor(BaseModel):
    name: str
    total_amount: float
    contribution_count: int


class RegistryAnalytics(BaseModel):
    registry_id: int
    title: str
    currency: str
    funding: FundingSummary
    item_breakdown: list[ItemFundingPublic]
    top_contributors: list[TopContributor]
    recent_contributions: list[ContributionPublic]


class UserAnalytics(BaseModel):
    user_id: int
    registries: int
    contribution_count: int
    total_amount: float
    total_target: float
    percent_funded: float


class AnalyticsResponse(BaseModel):
    registry: RegistryAnalytics | None = None
    user: UserAnalytics | None = None


class ContributionStats(BaseModel):
    scope: str
    scope_id: int
    total_amount: float
    contribution_count: int
    unique_contributors: int
    average_contribution: float
    largest_contribution: float
    recent_contributions: list[ContributionPublic]


class RegistrySort(str, Enum):
    RELEVANCE = "relevance"
    DATE_NEWEST = "date_newest"
    DATE_OLDEST = "date_oldest"
    TITLE_ASC = "title_asc"
    TITLE_DESC = "title_desc"


class RegistrySearchResult(BaseModel):
    id: int
    user_id: int
    owner_name: str
    title: str
    description: str | None
    occasion: str | None
    event_date: datetime | None
    currency: str
    status: str
    created_at: datetime

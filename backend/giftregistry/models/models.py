from datetime import datetime, timezone
from enum import Enum as StrEnumBase

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from giftregistry.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_notification_preferences() -> dict[str, bool]:
    return {"in_app": True, "email": True}


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    notification_preferences: Mapped[dict] = mapped_column(
        JSON,
        default=default_notification_preferences,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    registries: Mapped[list["Registry"]] = relationship(back_populates="owner")


class RegistryStatusEnum(str, StrEnumBase):
    ACTIVE = "active"
    ARCHIVED = "archived"


class ContributionStatusEnum(str, StrEnumBase):
    COMPLETED = "completed"


class Registry(Base):
    __tablename__ = "registries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    occasion: Mapped[str | None] = mapped_column(String(80), nullable=True)
    event_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False)
    show_contributor_names: Mapped[bool] = mapped_column(Boolean, default=True)
    allow_anonymous: Mapped[bool] = mapped_column(Boolean, default=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=RegistryStatusEnum.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    owner: Mapped[Profile] = relationship(back_populates="registries")
    gift_items: Mapped[list["GiftItem"]] = relationship(
        back_populates="parent_registry",
        cascade="all, delete-orphan",
    )
    contributions: Mapped[list["Contribution"]] = relationship(
        back_populates="parent_registry",
        cascade="all, delete-orphan",
    )
    co_owners: Mapped[list["RegistryCoOwner"]] = relationship(
        back_populates="parent_registry",
        cascade="all, delete-orphan",
    )
    comments: Mapped[list["Comment"]] = relationship(
        back_populates="parent_registry",
        cascade="all, delete-orphan",
    )


class GiftItem(Base):
    __tablename__ = "gift_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    registry_id: Mapped[int] = mapped_column(ForeignKey("registries.id"), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    price: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    is_purchased: Mapped[bool] = mapped_column(Boolean, default=False)
    reserved_by: Mapped[int | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    reservation_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    parent_registry: Mapped[Registry] = relationship(back_populates="gift_items")
    contributions: Mapped[list["Contribution"]] = relationship(
        back_populates="gift_item",
        cascade="all, delete-orphan",
    )
    favorites: Mapped[list["Favorite"]] = relationship(
        back_populates="gift_item",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_gift_items_price_non_negative"),
        CheckConstraint("quantity >= 1", name="ck_gift_items_quantity_positive"),
    )


class Favorite(Base):
    __tablename__ = "favorites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), index=True)
    gift_item_id: Mapped[int] = mapped_column(ForeignKey("gift_items.id"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    gift_item: Mapped[GiftItem] = relationship(back_populates="favorites")

    __table_args__ = (
        UniqueConstraint("profile_id", "gift_item_id", name="ux_favorites_profile_item"),
    )


class Contribution(Base):
    __tablename__ = "contributions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    gift_item_id: Mapped[int] = mapped_column(ForeignKey("gift_items.id"), index=True)
    registry_id: Mapped[int] = mapped_column(ForeignKey("registries.id"), index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("profiles.id"), nullable=True, index=True)
    contributor_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    amount: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)
    message: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String(20), default=ContributionStatusEnum.COMPLETED.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    gift_item: Mapped[GiftItem] = relationship(back_populates="contributions")
    parent_registry: Mapped[Registry] = relationship(back_populates="contributions")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_contributions_amount_positive"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), index=True)
    type: Mapped[str] = mapped_column(String(60), nullable=False)
    registry_id: Mapped[int | None] = mapped_column(
        ForeignKey("registries.id", ondelete="SET NULL"), nullable=True
    )
    gift_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("gift_items.id", ondelete="SET NULL"), nullable=True
    )
    contribution_id: Mapped[int | None] = mapped_column(
        ForeignKey("contributions.id", ondelete="SET NULL"), nullable=True
    )
    contributor_name: Mapped[str | None] = mapped_column(String(160), nullable=True)
    amount: Mapped[float | None] = mapped_column(Numeric(12, 2), nullable=True)
    message: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class RegistryCoOwner(Base):
    __tablename__ = "registry_co_owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    registry_id: Mapped[int] = mapped_column(ForeignKey("registries.id"), index=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), index=True)
    can_edit: Mapped[bool] = mapped_column(Boolean, default=True)
    can_delete: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    parent_registry: Mapped[Registry] = relationship(back_populates="co_owners")

    __table_args__ = (
        UniqueConstraint("registry_id", "profile_id", name="ux_registry_co_owners_pair"),
    )


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    registry_id: Mapped[int] = mapped_column(ForeignKey("registries.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id"), index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    parent_registry: Mapped[Registry] = relationship(back_populates="comments")

import logging

from fastapi import APIRouter, Query, Request, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from giftregistry.api.deps import CurrentUserDep, DbSessionDep, OptionalUserDep
from giftregistry.api.loaders import load_contributions, load_favorite_ids, load_items
from giftregistry.api.serializers import serialize_gift_item
from giftregistry.core.audit import AuditAction, audit_gift_item_action
from giftregistry.core.errors import InternalError, NotFound
from giftregistry.core.funding import group_by_item
from giftregistry.core.notifications import notify_gift_item_added
from giftregistry.core.permissions import RegistryAccess, ensure_can_edit, load_registry
from giftregistry.core.reservations import release, reserve
from giftregistry.models.models import Favorite, GiftItem, Profile, Registry
from giftregistry.schemas.registry import (
    FavoriteToggle,
    GiftItemCreate,
    GiftItemPublic,
    GiftItemUpdate,
)

router = APIRouter(prefix="/api/gift-items", tags=["gift-items"])
logger = logging.getLogger("giftregistry.gift_items")

_CLEARABLE_FIELDS = {"description", "url", "image_url"}


async def _load_item(
    db: DbSessionDep,
    item_id: int,
    viewer: Profile | None,
) -> tuple[GiftItem, Registry, RegistryAccess]:
    item = (await db.execute(select(GiftItem).where(GiftItem.id == item_id))).scalar_one_or_none()
    if item is None:
        raise NotFound("Gift item not found")
    try:
        registry, access = await load_registry(db, item.registry_id, viewer)
    except NotFound:
        raise NotFound("Gift item not found")
    return item, registry, access


async def _item_view(db: DbSessionDep, item: GiftItem, viewer: Profile | None) -> GiftItemPublic:
    contributions = await load_contributions(db, gift_item_ids=[item.id])
    favorites = await load_favorite_ids(db, viewer, [item.id])
    return serialize_gift_item(item, contributions, is_favorite=item.id in favorites)


async def _commit(db: DbSessionDep, action: str, item_id: int | None = None) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Gift item %s failed item_id=%s", action, item_id)
        raise InternalError(f"Failed to {action} gift item")


@router.get("", response_model=list[GiftItemPublic])
async def list_gift_items(
    db: DbSessionDep,
    current_user: OptionalUserDep,
    registry_id: int = Query(...),
) -> list[GiftItemPublic]:
    registry, _ = await load_registry(db, registry_id, current_user)
    items = await load_items(db, [registry.id])
    contributions = await load_contributions(db, registry_ids=[registry.id])
    by_item = group_by_item(contributions)
    favorites = await load_favorite_ids(db, current_user, (item.id for item in items))
    return [
        serialize_gift_item(item, by_item.get(item.id, []), is_favorite=item.id in favorites)
        for item in items
    ]


@router.post("", response_model=GiftItemPublic, status_code=status.HTTP_201_CREATED)
async def create_gift_item(
    payload: GiftItemCreate,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> GiftItemPublic:
    registry, access = await load_registry(db, payload.registry_id, current_user)
    ensure_can_edit(access)

    item = GiftItem(
        registry_id=registry.id,
        user_id=current_user.id,
        name=payload.name,
        description=payload.description,
        price=payload.price,
        quantity=payload.quantity,
        url=payload.url,
        image_url=payload.image_url,
        is_purchased=payload.is_purchased,
    )
    db.add(item)
    await _commit(db, "create")
    await db.refresh(item)
    audit_gift_item_action(AuditAction.GIFT_ITEM_CREATE, request, current_user.id, item.id, registry.id)

    response = serialize_gift_item(item, [])

    result = await notify_gift_item_added(db, registry, item, current_user)
    if result is not None and not result.ok:
        logger.warning(
            "Gift item notification failed item_id=%s registry_id=%s",
            response.id,
            response.registry_id,
        )

    return response


@router.get("/{item_id}", response_model=GiftItemPublic)
async def get_gift_item(
    item_id: int,
    db: DbSessionDep,
    current_user: OptionalUserDep,
) -> GiftItemPublic:
    item, _, _ = await _load_item(db, item_id, current_user)
    return await _item_view(db, item, current_user)


@router.put("/{item_id}", response_model=GiftItemPublic)
async def update_gift_item(
    item_id: int,
    payload: GiftItemUpdate,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> GiftItemPublic:
    item, registry, access = await _load_item(db, item_id, current_user)
    ensure_can_edit(access)

    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is None and key not in _CLEARABLE_FIELDS:
            continue
        setattr(item, key, value)

    await _commit(db, "update", item.id)
    await db.refresh(item)
    audit_gift_item_action(AuditAction.GIFT_ITEM_UPDATE, request, current_user.id, item.id, registry.id)
    return await _item_view(db, item, current_user)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_gift_item(
    item_id: int,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> None:
    item, registry, access = await _load_item(db, item_id, current_user)
    ensure_can_edit(access)
    await db.delete(item)
    await _commit(db, "delete", item_id)
    audit_gift_item_action(AuditAction.GIFT_ITEM_DELETE, request, current_user.id, item_id, registry.id)


@router.post("/{item_id}/favorite", response_model=FavoriteToggle)
async def toggle_favorite(
    item_id: int,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> FavoriteToggle:
    item, _, _ = await _load_item(db, item_id, current_user)
    existing = (
        await db.execute(
            select(Favorite).where(
                Favorite.profile_id == current_user.id,
                Favorite.gift_item_id == item.id,
            )
        )
    ).scalar_one_or_none()
    if existing is not None:
        await db.delete(existing)
        is_favorite = False
    else:
        db.add(Favorite(profile_id=current_user.id, gift_item_id=item.id))
        is_favorite = True
    await _commit(db, "favorite", item.id)
    return FavoriteToggle(gift_item_id=item.id, is_favorite=is_favorite)


@router.post("/{item_id}/reserve", response_model=GiftItemPublic)
async def reserve_gift_item(
    item_id: int,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> GiftItemPublic:
    # One active hold per item; registry managers cannot hold their own items.
    item, registry, access = await _load_item(db, item_id, current_user)
    expires_at = reserve(item, current_user.id, is_manager=access.is_manager)
    await _commit(db, "reserve", item.id)
    await db.refresh(item)
    audit_gift_item_action(AuditAction.GIFT_ITEM_RESERVE, request, current_user.id, item.id, registry.id)
    logger.info("Gift item reserved item_id=%s user_id=%s expires_at=%s", item.id, current_user.id, expires_at)
    return await _item_view(db, item, current_user)


@router.post("/{item_id}/cancel-reservation", response_model=GiftItemPublic)
async def cancel_reservation(
    item_id: int,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> GiftItemPublic:
    item, registry, _ = await _load_item(db, item_id, current_user)
    release(item, current_user.id)
    await _commit(db, "release", item.id)
    await db.refresh(item)
    audit_gift_item_action(
        AuditAction.GIFT_ITEM_RESERVATION_CANCEL, request, current_user.id, item.id, registry.id
    )
    return await _item_view(db, item, current_user)

"""Batched queries shared by the registry, gift item and analytics routes.

Each loader issues one query for a whole set of ids so views never fall into
per-item lazy loading.
"""
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from giftregistry.models.models import Contribution, Favorite, GiftItem, Profile, Registry, RegistryCoOwner


async def load_items(db: AsyncSession, registry_ids: Iterable[int]) -> list[GiftItem]:
    ids = list(set(registry_ids))
    if not ids:
        return []
    result = await db.execute(
        select(GiftItem)
        .where(GiftItem.registry_id.in_(ids))
        .order_by(GiftItem.created_at.desc(), GiftItem.id.desc())
    )
    return list(result.scalars())


async def load_contributions(
    db: AsyncSession,
    *,
    registry_ids: Iterable[int] | None = None,
    gift_item_ids: Iterable[int] | None = None,
) -> list[Contribution]:
    """Contributions newest first; the id breaks timestamp ties in insertion order."""
    query = select(Contribution)
    if registry_ids is not None:
        ids = list(set(registry_ids))
        if not ids:
            return []
        query = query.where(Contribution.registry_id.in_(ids))
    if gift_item_ids is not None:
        ids = list(set(gift_item_ids))
        if not ids:
            return []
        query = query.where(Contribution.gift_item_id.in_(ids))
    result = await db.execute(
        query.order_by(Contribution.created_at.desc(), Contribution.id.desc())
    )
    return list(result.scalars())


async def load_profiles(db: AsyncSession, profile_ids: Iterable[int | None]) -> dict[int, Profile]:
    ids = {pid for pid in profile_ids if pid is not None}
    if not ids:
        return {}
    result = await db.execute(select(Profile).where(Profile.id.in_(ids)))
    return {profile.id: profile for profile in result.scalars()}


async def load_favorite_ids(
    db: AsyncSession,
    viewer: Profile | None,
    gift_item_ids: Iterable[int],
) -> set[int]:
    ids = list(set(gift_item_ids))
    if viewer is None or not ids:
        return set()
    result = await db.execute(
        select(Favorite.gift_item_id).where(
            Favorite.profile_id == viewer.id,
            Favorite.gift_item_id.in_(ids),
        )
    )
    return set(result.scalars())


async def load_managed_registries(db: AsyncSession, user: Profile) -> list[Registry]:
    """Registries the user owns or co-owns, newest first."""
    shared_ids = select(RegistryCoOwner.registry_id).where(RegistryCoOwner.profile_id == user.id)
    result = await db.execute(
        select(Registry)
        .where((Registry.user_id == user.id) | (Registry.id.in_(shared_ids)))
        .order_by(Registry.created_at.desc(), Registry.id.desc())
    )
    return list(result.scalars())


async def load_co_owner_grants(db: AsyncSession, user: Profile) -> dict[int, RegistryCoOwner]:
    result = await db.execute(select(RegistryCoOwner).where(RegistryCoOwner.profile_id == user.id))
    return {grant.registry_id: grant for grant in result.scalars()}
